"""Component factory for pv-inspect."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from typing import Self

import structlog
from kubernetes_asyncio import config as kube_config
from kubernetes_asyncio.client import ApiClient, Configuration
from kubernetes_asyncio.config import ConfigException
from safir.kubernetes import initialize_kubernetes
from structlog.stdlib import BoundLogger

from .config import Config
from .constants import ROOT_LOGGER
from .exceptions import PVInspectError
from .services.cleanup import CleanupCoordinator
from .services.helpers import PortForwarder, SshfsMounter
from .services.inspector import Inspector
from .services.lifecycle import LifecycleController
from .services.proxy import SessionProxy
from .services.sweeper import StalePodSweeper
from .storage.kubernetes.pod import PodStorage
from .storage.kubernetes.pvc import PersistentVolumeClaimStorage
from .templates import TemplateLoader
from .terminal import LocalTerminal

__all__ = ["Factory", "create_api_client"]


async def create_api_client(context: str | None) -> ApiClient:
    """Configure and create a Kubernetes API client.

    With an explicit context, the kubeconfig file is used. Otherwise the
    in-cluster configuration is used when running inside Kubernetes, so
    that the sweeper can run as a Kubernetes job, and the current context of
    the kubeconfig file is used elsewhere. Either way the configuration
    becomes the default for all clients, including the one used for exec.

    Parameters
    ----------
    context
        Kubeconfig context to use, or `None` for the default.

    Returns
    -------
    kubernetes_asyncio.client.ApiClient
        Configured client.

    Raises
    ------
    PVInspectError
        Raised if no usable Kubernetes configuration was found.
    """
    try:
        if context:
            await kube_config.load_kube_config(context=context)
        else:
            await initialize_kubernetes()
    except (ConfigException, OSError) as e:
        if context:
            raise PVInspectError(f"Cannot load context {context}: {e}") from e
        raise PVInspectError(f"No Kubernetes configuration found: {e}") from e
    return ApiClient()


class Factory:
    """Build pv-inspect components.

    Parameters
    ----------
    config
        Application configuration.
    api_client
        Kubernetes API client.
    logger
        Logger to use for messages.
    terminal
        Operator's terminal. Defaults to standard input and output.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for pv-inspect components.

        Parameters
        ----------
        config
            Application configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(ROOT_LOGGER)
        api_client = await create_api_client(config.context)
        host = Configuration.get_default_copy().host
        logger.debug("Connecting to Kubernetes", host=host)
        factory = cls(config, api_client, logger)
        async with aclosing(factory):
            yield factory

    def __init__(
        self,
        config: Config,
        api_client: ApiClient,
        logger: BoundLogger,
        terminal: LocalTerminal | None = None,
    ) -> None:
        self._config = config
        self._api_client = api_client
        self._logger = logger
        self._terminal = terminal
        self._pod_storage: PodStorage | None = None

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        await self._api_client.close()

    def create_cleanup_coordinator(
        self, lifecycle: LifecycleController
    ) -> CleanupCoordinator:
        """Create the cleanup coordinator for sessions."""
        return CleanupCoordinator(lifecycle, self._logger)

    def create_inspector(self) -> Inspector:
        """Create the service that runs inspection sessions."""
        lifecycle = self.create_lifecycle_controller()
        return Inspector(
            pvc_storage=self.create_pvc_storage(),
            templates=self.create_template_loader(),
            lifecycle=lifecycle,
            proxy=self.create_session_proxy(),
            cleanup=self.create_cleanup_coordinator(lifecycle),
            logger=self._logger,
        )

    def create_lifecycle_controller(self) -> LifecycleController:
        """Create the pod lifecycle controller."""
        return LifecycleController(
            self.create_pod_storage(),
            create_timeout=self._config.create_timeout,
            ready_timeout=self._config.ready_timeout,
            delete_timeout=self._config.delete_timeout,
            logger=self._logger,
        )

    def create_pod_storage(self) -> PodStorage:
        """Create the storage layer for pods, shared by all components."""
        if not self._pod_storage:
            self._pod_storage = PodStorage(self._api_client, self._logger)
        return self._pod_storage

    def create_pvc_storage(self) -> PersistentVolumeClaimStorage:
        """Create the storage layer for persistent volume claims."""
        return PersistentVolumeClaimStorage(self._api_client, self._logger)

    def create_session_proxy(self) -> SessionProxy:
        """Create the session proxy."""
        return SessionProxy(
            pod_storage=self.create_pod_storage(),
            port_forwarder=PortForwarder(
                kubectl=self._config.kubectl,
                context=self._config.context,
                logger=self._logger,
            ),
            mounter=SshfsMounter(
                sshfs=self._config.sshfs, logger=self._logger
            ),
            terminal=self._terminal or LocalTerminal(),
            escape_character=self._config.escape_character,
            logger=self._logger,
        )

    def create_sweeper(self) -> StalePodSweeper:
        """Create the stale pod sweeper."""
        return StalePodSweeper(
            self.create_pod_storage(),
            delete_timeout=self._config.delete_timeout,
            logger=self._logger,
        )

    def create_template_loader(self) -> TemplateLoader:
        """Create the pod template loader."""
        return TemplateLoader(self._config.template_directory)
