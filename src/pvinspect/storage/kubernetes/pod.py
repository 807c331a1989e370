"""Kubernetes storage layer for ``Pod`` objects."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

from aiohttp import ClientError, ClientWebSocketResponse
from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Pod
from kubernetes_asyncio.stream import WsApiClient
from structlog.stdlib import BoundLogger

from ...constants import FIELD_MANAGER
from ...exceptions import KubernetesError, PodFailedError
from ...models.domain.kubernetes import (
    Readiness,
    WatchEventType,
    pod_readiness,
)
from ...timeout import Timeout
from .base import KubernetesObjectStorage
from .watcher import KubernetesWatcher

__all__ = ["PodStorage"]


class PodStorage(KubernetesObjectStorage[V1Pod]):
    """Storage layer for ``Pod`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=self._api.create_namespaced_pod,
            delete_method=self._api.delete_namespaced_pod,
            list_method=self._api.list_namespaced_pod,
            read_method=self._api.read_namespaced_pod,
            object_type=V1Pod,
            kind="Pod",
            logger=logger,
        )

    async def apply_labels(
        self,
        name: str,
        namespace: str,
        labels: dict[str, str],
        timeout: Timeout,
        *,
        uid: str | None = None,
    ) -> None:
        """Set labels on a pod with a forced server-side apply.

        Forcing the apply takes ownership of the labels even if another
        field manager set them.

        Parameters
        ----------
        name
            Name of the pod.
        namespace
            Namespace of the pod.
        labels
            Labels to set.
        timeout
            Timeout on operation.
        uid
            If given, the apply fails unless the pod still has this UID.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        metadata: dict[str, Any] = {
            "name": name,
            "namespace": namespace,
            "labels": labels,
        }
        if uid:
            metadata["uid"] = uid
        body = {"apiVersion": "v1", "kind": "Pod", "metadata": metadata}
        self._logger.debug(
            "Applying pod labels", name=name, namespace=namespace, **labels
        )
        try:
            await self._api.patch_namespaced_pod(
                name,
                namespace,
                body,
                field_manager=FIELD_MANAGER,
                force=True,
                _content_type="application/apply-patch+yaml",
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error applying labels",
                e,
                kind="Pod",
                namespace=namespace,
                name=name,
            ) from e

    async def list_all_namespaces(
        self, timeout: Timeout, *, label_selector: str | None = None
    ) -> list[V1Pod]:
        """List pods in every namespace.

        Parameters
        ----------
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list of kubernetes_asyncio.client.V1Pod
            Pods found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        extra_args: dict[str, Any] = {"_request_timeout": timeout.left()}
        if label_selector:
            extra_args["label_selector"] = label_selector
        try:
            pods = await self._api.list_pod_for_all_namespaces(**extra_args)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects", e, kind="Pod"
            ) from e
        return pods.items

    async def wait_for_ready(
        self, name: str, namespace: str, timeout: Timeout
    ) -> V1Pod:
        """Wait for a pod to become ready.

        Parameters
        ----------
        name
            Name of the pod.
        namespace
            Namespace in which the pod is located.
        timeout
            How long to wait.

        Returns
        -------
        kubernetes_asyncio.client.V1Pod
            The pod as of the event in which it became ready.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        OperationTimeoutError
            Raised if the timeout expires.
        PodFailedError
            Raised if the pod disappears or can never become ready.
        """
        logger = self._logger.bind(name=name, namespace=namespace)
        logger.debug("Waiting for pod to become ready")

        # Retrieve the object first. It may already be ready, and if not, the
        # watch starts from the next event after the current object version.
        pod = await self.read(name, namespace, timeout)
        if self._check_readiness(name, namespace, pod) == Readiness.READY:
            return pod

        watcher = KubernetesWatcher(
            method=self._list,
            object_type=V1Pod,
            kind="Pod",
            name=name,
            namespace=namespace,
            resource_version=pod.metadata.resource_version,
            timeout=timeout,
            logger=logger,
        )
        try:
            async with timeout.enforce():
                async for event in watcher.watch():
                    if event.action == WatchEventType.DELETED:
                        raise PodFailedError(name, namespace, "pod deleted")
                    readiness = self._check_readiness(
                        name, namespace, event.object
                    )
                    if readiness == Readiness.READY:
                        logger.debug("Pod is ready")
                        return event.object
        finally:
            await watcher.close()

        # This should be impossible; someone called stop on the watcher.
        raise RuntimeError("Wait for pod readiness unexpectedly stopped")

    @asynccontextmanager
    async def exec(
        self,
        name: str,
        namespace: str,
        command: list[str],
        *,
        tty: bool = True,
        container: str | None = None,
    ) -> AsyncIterator[ClientWebSocketResponse]:
        """Start an interactive command in a pod.

        Output from the command arrives as binary websocket messages whose
        first byte is the channel number, and input is sent the same way.
        Leaving the context closes the connection, which ends the command.

        Parameters
        ----------
        name
            Name of the pod.
        namespace
            Namespace of the pod.
        command
            Command to run.
        tty
            Whether to allocate a terminal for the command.
        container
            Container in which to run the command. Defaults to the first
            container.

        Yields
        ------
        aiohttp.ClientWebSocketResponse
            Open websocket connection with standard input enabled.

        Raises
        ------
        KubernetesError
            Raised if the exec request fails.
        """
        extra_args = {"container": container} if container else {}
        self._logger.debug(
            "Starting command in pod",
            name=name,
            namespace=namespace,
            command=command,
        )
        async with AsyncExitStack() as stack:
            api_client = await stack.enter_async_context(WsApiClient())
            api = client.CoreV1Api(api_client)
            try:
                response = await api.connect_get_namespaced_pod_exec(
                    name,
                    namespace,
                    command=command,
                    stderr=True,
                    stdin=True,
                    stdout=True,
                    tty=tty,
                    _preload_content=False,
                    **extra_args,
                )
                websocket = await stack.enter_async_context(response)
            except ApiException as e:
                raise KubernetesError.from_exception(
                    "Error starting command",
                    e,
                    kind="Pod",
                    namespace=namespace,
                    name=name,
                ) from e
            except ClientError as e:
                raise KubernetesError(
                    "Error starting command",
                    kind="Pod",
                    namespace=namespace,
                    name=name,
                    body=str(e),
                ) from e
            yield websocket

    def _check_readiness(
        self, name: str, namespace: str, pod: V1Pod | None
    ) -> Readiness:
        if pod is None:
            raise PodFailedError(name, namespace, "pod not found")
        readiness = pod_readiness(pod)
        if readiness == Readiness.FAILED:
            raise PodFailedError(name, namespace, self._failure_reason(pod))
        return readiness

    def _failure_reason(self, pod: V1Pod) -> str:
        for status in pod.status.container_statuses or []:
            if status.state and status.state.waiting:
                if status.state.waiting.reason:
                    return status.state.waiting.reason
        return f"phase {pod.status.phase}"
