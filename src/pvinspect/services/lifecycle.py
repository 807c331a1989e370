"""Lifecycle of the inspection pod."""

from __future__ import annotations

from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..constants import DEFAULT_CREATE_TIMEOUT, LABEL_DELETE, LABEL_KEY
from ..exceptions import (
    KubernetesError,
    OperationTimeoutError,
    PodCreationError,
    PodDeletionError,
    ReadinessTimeoutError,
)
from ..models.domain.inspection import PodDescriptor
from ..models.domain.kubernetes import PodHandle, PodState
from ..storage.kubernetes.pod import PodStorage
from ..timeout import Timeout

__all__ = ["LifecycleController"]

_TRANSITIONS: dict[PodState, set[PodState]] = {
    PodState.REQUESTED: {PodState.CREATED},
    PodState.CREATED: {PodState.PENDING, PodState.TERMINATING},
    PodState.PENDING: {PodState.READY, PodState.TERMINATING},
    PodState.READY: {PodState.TERMINATING},
    PodState.TERMINATING: {PodState.TERMINATING, PodState.DELETED},
    PodState.DELETED: {PodState.TERMINATING, PodState.DELETED},
}
"""Allowed state transitions for an inspection pod."""


class LifecycleController:
    """Create, wait for, and delete inspection pods.

    Tracks the lifecycle state of every pod it created. A pod only reaches
    ``READY`` from ``PENDING``, so callers can rely on `state` before
    starting a session.

    Parameters
    ----------
    pod_storage
        Storage layer for pods.
    create_timeout
        How long to wait for Kubernetes to accept a new pod.
    ready_timeout
        How long to wait for a pod to become ready, or `None` to wait
        indefinitely.
    delete_timeout
        How long to wait for deletion calls and confirmation, or `None` to
        wait indefinitely.
    logger
        Logger to use.
    """

    def __init__(
        self,
        pod_storage: PodStorage,
        *,
        create_timeout: timedelta = DEFAULT_CREATE_TIMEOUT,
        ready_timeout: timedelta | None = None,
        delete_timeout: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._storage = pod_storage
        self._create_timeout = create_timeout
        self._ready_timeout = ready_timeout
        self._delete_timeout = delete_timeout
        self._logger = logger
        self._states: dict[str, PodState] = {}

    def state(self, handle: PodHandle) -> PodState:
        """Return the lifecycle state of a pod created by this controller."""
        return self._states[handle.uid]

    async def create(self, descriptor: PodDescriptor) -> PodHandle:
        """Create the inspection pod.

        Parameters
        ----------
        descriptor
            Pod to create.

        Returns
        -------
        PodHandle
            Identity of the created pod.

        Raises
        ------
        PodCreationError
            Raised if Kubernetes rejects the pod.
        """
        timeout = Timeout("Pod creation", self._create_timeout)
        body = descriptor.to_manifest()
        try:
            pod = await self._storage.create(
                descriptor.namespace, body, timeout
            )
        except KubernetesError as e:
            raise PodCreationError(
                "Cannot create inspection pod",
                kind=e.kind,
                namespace=e.namespace,
                name=e.name,
                status=e.status,
                body=e.body,
            ) from e
        handle = PodHandle.from_pod(pod)
        self._states[handle.uid] = PodState.REQUESTED
        self._transition(handle, PodState.CREATED)
        self._logger.info(
            "Created inspection pod",
            name=handle.name,
            namespace=handle.namespace,
        )
        return handle

    async def await_ready(
        self, handle: PodHandle, timeout: timedelta | None = None
    ) -> None:
        """Wait until the pod is running and all of its containers are ready.

        Parameters
        ----------
        handle
            Pod to wait for.
        timeout
            How long to wait. Defaults to the configured readiness timeout.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        PodFailedError
            Raised if the pod can never become ready.
        ReadinessTimeoutError
            Raised if the pod did not become ready in time.
        """
        self._transition(handle, PodState.PENDING)
        if timeout is None:
            timeout = self._ready_timeout
        logger = self._logger.bind(
            name=handle.name, namespace=handle.namespace
        )
        logger.info("Waiting for pod to become ready")
        ready_timeout = Timeout("Pod readiness", timeout)
        try:
            await self._storage.wait_for_ready(
                handle.name, handle.namespace, ready_timeout
            )
        except OperationTimeoutError as e:
            raise ReadinessTimeoutError(
                e.operation, started_at=e.started_at, failed_at=e.failed_at
            ) from e
        self._transition(handle, PodState.READY)
        logger.info("Pod is ready", elapsed=round(ready_timeout.elapsed(), 1))

    async def delete(
        self, handle: PodHandle, *, relabel_first: bool = True
    ) -> None:
        """Delete the pod, optionally marking it for the sweeper first.

        Relabeling first means that if the operator is not allowed to delete
        pods, a sweeper running with more privileges will still remove it.
        Deleting a pod that is already gone succeeds.

        Parameters
        ----------
        handle
            Pod to delete.
        relabel_first
            Whether to set the marker label to the deferred-deletion value
            before deleting.

        Raises
        ------
        PodDeletionError
            Raised if the delete failed and the pod was not successfully
            relabeled for the sweeper.
        """
        logger = self._logger.bind(
            name=handle.name, namespace=handle.namespace
        )
        timeout = Timeout("Pod deletion", self._delete_timeout)
        patch_error = None
        if relabel_first:
            try:
                await self._storage.apply_labels(
                    handle.name,
                    handle.namespace,
                    {LABEL_KEY: LABEL_DELETE},
                    timeout,
                    uid=handle.uid,
                )
            except KubernetesError as e:
                logger.warning("Cannot mark pod for deletion", error=str(e))
                patch_error = e
        try:
            await self._storage.delete(
                handle.name, handle.namespace, timeout, uid=handle.uid
            )
        except KubernetesError as e:
            if not relabel_first or patch_error:
                raise PodDeletionError(
                    handle.name,
                    handle.namespace,
                    patch_error=patch_error,
                    delete_error=e,
                ) from e
            msg = "Cannot delete pod, leaving it for the stale pod sweeper"
            logger.warning(msg, error=str(e))
        else:
            logger.info("Deleted inspection pod")
        self._transition(handle, PodState.TERMINATING)

    async def await_deleted(self, handle: PodHandle) -> None:
        """Wait until the pod with the handle's UID no longer exists.

        Parameters
        ----------
        handle
            Pod to wait for.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        OperationTimeoutError
            Raised if the pod was not deleted within the deletion timeout.
        """
        logger = self._logger.bind(
            name=handle.name, namespace=handle.namespace
        )
        logger.info("Waiting for pod to be deleted")
        timeout = Timeout("Pod deletion", self._delete_timeout)
        await self._storage.wait_for_deletion(
            handle.name, handle.namespace, timeout, uid=handle.uid
        )
        self._transition(handle, PodState.DELETED)
        logger.info("Pod deleted")

    def _transition(self, handle: PodHandle, new: PodState) -> None:
        current = self._states.get(handle.uid)
        if current and new not in _TRANSITIONS[current]:
            msg = f"Invalid pod transition {current.value} -> {new.value}"
            raise RuntimeError(msg)
        self._states[handle.uid] = new
