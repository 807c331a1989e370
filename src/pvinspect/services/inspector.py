"""Orchestration of an inspection session."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager

from structlog.stdlib import BoundLogger

from ..constants import READY_SETTLE_DELAY
from ..exceptions import ClaimNotFoundError
from ..models.domain.credentials import CredentialPair
from ..models.domain.inspection import (
    AccessMode,
    InspectionRequest,
    PodDescriptor,
    SessionEnd,
)
from ..models.domain.kubernetes import PodHandle
from ..models.domain.pvc import PersistentVolumeClaimSummary
from ..models.domain.template import PodTemplate
from ..storage.kubernetes.pvc import PersistentVolumeClaimStorage
from ..templates import TemplateLoader
from ..timeout import Timeout
from .builder import PodSpecBuilder
from .cleanup import CleanupCoordinator
from .credentials import provision_credentials
from .lifecycle import LifecycleController
from .proxy import SessionHandle, SessionProxy

__all__ = ["Inspector"]


class Inspector:
    """Run inspection sessions against persistent volume claims.

    A session generates credentials if the template needs them, builds and
    creates the pod, waits for it to become ready, runs the session, and
    then always cleans up, whether the session ended normally, failed, or
    was cancelled.

    Parameters
    ----------
    pvc_storage
        Storage layer for persistent volume claims.
    templates
        Source of pod templates.
    lifecycle
        Lifecycle controller for the pod.
    proxy
        Session proxy.
    cleanup
        Cleanup coordinator.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        pvc_storage: PersistentVolumeClaimStorage,
        templates: TemplateLoader,
        lifecycle: LifecycleController,
        proxy: SessionProxy,
        cleanup: CleanupCoordinator,
        logger: BoundLogger,
    ) -> None:
        self._pvcs = pvc_storage
        self._templates = templates
        self._lifecycle = lifecycle
        self._proxy = proxy
        self._cleanup = cleanup
        self._logger = logger

    async def list_claims(
        self, namespace: str
    ) -> list[PersistentVolumeClaimSummary]:
        """List the persistent volume claims in a namespace.

        Raises
        ------
        KubernetesError
            Raised if the claims cannot be listed.
        """
        timeout = Timeout("Listing claims", None)
        pvcs = await self._pvcs.list(namespace, timeout)
        summaries = [PersistentVolumeClaimSummary.from_pvc(p) for p in pvcs]
        return sorted(summaries, key=lambda s: s.name)

    async def validate(self, request: InspectionRequest) -> PodTemplate:
        """Check that a request can be carried out, without changing anything.

        Parameters
        ----------
        request
            Request to check.

        Returns
        -------
        PodTemplate
            Template the session will use.

        Raises
        ------
        ClaimNotFoundError
            Raised if the claim does not exist.
        HelperProcessError
            Raised if a required helper program is missing.
        InvalidTemplateError
            Raised if the template is invalid or cannot serve the request.
        KubernetesError
            Raised if the claims cannot be listed.
        TemplateNotFoundError
            Raised if the template does not exist.
        """
        claims = await self.list_claims(request.namespace)
        if request.pvc not in {c.name for c in claims}:
            raise ClaimNotFoundError(request.pvc, request.namespace)
        template = self._templates.load(request.template)
        self._proxy.check(request, template)
        return template

    async def inspect(self, request: InspectionRequest) -> SessionEnd:
        """Run an inspection session.

        Parameters
        ----------
        request
            What to inspect and how.

        Returns
        -------
        SessionEnd
            Why the session ended.

        Raises
        ------
        PVInspectError
            Raised if the session could not be set up or failed. If a pod
            was created, it has been cleaned up before this is raised.
        """
        template = await self.validate(request)
        logger = self._logger.bind(
            pvc=request.pvc, namespace=request.namespace
        )
        if request.access_mode == AccessMode.READ_WRITE:
            logger.warning("Claim will be mounted read/write")
        with self._credentials(template) as credentials:
            builder = PodSpecBuilder(template)
            descriptor = builder.build(request, credentials)
            handle = await self._create_pod(
                descriptor, wait=request.wait_for_deletion
            )
            session = SessionHandle(pod=handle)
            try:
                await self._lifecycle.await_ready(handle)
                await asyncio.sleep(READY_SETTLE_DELAY.total_seconds())
                await self._proxy.open(session, request, template, credentials)
                end = await self._proxy.run(session)
                logger.info("Session ended", reason=end.value)
                return end
            finally:
                await self._cleanup.run(
                    session, wait=request.wait_for_deletion
                )

    async def _create_pod(
        self, descriptor: PodDescriptor, *, wait: bool
    ) -> PodHandle:
        """Create the pod, deleting it if cancelled while it is created.

        Kubernetes may accept the pod after the request was sent even if the
        caller is cancelled while waiting for the reply, so creation runs to
        completion and any pod it created is cleaned up before the
        cancellation propagates.
        """
        creation = asyncio.ensure_future(self._lifecycle.create(descriptor))
        try:
            return await asyncio.shield(creation)
        except asyncio.CancelledError:
            await asyncio.wait([creation])
            if not creation.cancelled() and not creation.exception():
                session = SessionHandle(pod=creation.result())
                await self._cleanup.run(session, wait=wait)
            raise

    @contextmanager
    def _credentials(
        self, template: PodTemplate
    ) -> Iterator[CredentialPair | None]:
        if not template.credential:
            yield None
            return
        with provision_credentials(self._logger) as credentials:
            yield credentials
