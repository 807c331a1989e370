"""Generic Kubernetes object storage.

Wraps the methods of the Kubernetes client for one object kind with logging,
exception conversion, and waiting for deletion to complete.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

from kubernetes_asyncio.client import (
    ApiException,
    V1DeleteOptions,
    V1Preconditions,
)
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError, OperationTimeoutError
from ...models.domain.kubernetes import KubernetesModel, WatchEventType
from ...timeout import Timeout
from .watcher import KubernetesWatcher

__all__ = ["KubernetesObjectStorage"]


class KubernetesObjectStorage[T: KubernetesModel]:
    """Generic Kubernetes object storage supporting create, read, list, and
    delete.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific storage classes
    built on top of it instead.

    Parameters
    ----------
    create_method
        Method to create this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list all of this type of object in a namespace.
    read_method
        Method to read this type of object.
    object_type
        Type of object being acted on.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        create_method: Callable[..., Awaitable[Any]],
        delete_method: Callable[..., Awaitable[Any]],
        list_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        self._create = create_method
        self._delete = delete_method
        self._list = list_method
        self._read = read_method
        self._type = object_type
        self._kind = kind
        self._logger = logger

    async def create(
        self, namespace: str, body: dict[str, Any], timeout: Timeout
    ) -> T:
        """Create a new Kubernetes object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            New object in Kubernetes API form. Its name may be given by
            ``metadata.generateName``.
        timeout
            Timeout on operation.

        Returns
        -------
        typing.Any
            Object as created, including its assigned name and UID.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        metadata = body.get("metadata", {})
        name = metadata.get("name") or metadata.get("generateName")
        self._logger.debug(
            f"Creating {self._kind}", name=name, namespace=namespace
        )
        try:
            return await self._create(
                namespace, body, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error creating object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def read(
        self, name: str, namespace: str, timeout: Timeout
    ) -> T | None:
        """Read a Kubernetes object.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Returns
        -------
        typing.Any or None
            Kubernetes object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            return await self._read(
                name, namespace, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def delete(
        self,
        name: str,
        namespace: str,
        timeout: Timeout,
        *,
        uid: str | None = None,
        grace_period: timedelta | None = None,
    ) -> None:
        """Delete a Kubernetes object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.
        uid
            If given, only delete the object if it still has this UID. An
            object of the same name with a different UID is treated as
            already deleted.
        grace_period
            How long Kubernetes should wait between sending SIGTERM and
            sending SIGKILL to pod processes. Truncated to integer seconds.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        extra_args: dict[str, Any] = {"_request_timeout": timeout.left()}
        body = V1DeleteOptions()
        if uid:
            body.preconditions = V1Preconditions(uid=uid)
        if grace_period is not None:
            grace = int(grace_period.total_seconds())
            body.grace_period_seconds = grace
            extra_args["grace_period_seconds"] = grace
        self._logger.debug(
            f"Deleting {self._kind}", name=name, namespace=namespace, uid=uid
        )
        try:
            await self._delete(name, namespace, body=body, **extra_args)
        except ApiException as e:
            if e.status == 404:
                return
            if uid and e.status == 409:
                msg = f"{self._kind} was replaced, not deleting"
                self._logger.debug(msg, name=name, namespace=namespace)
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[T]:
        """List all objects of the appropriate kind in the namespace.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list
            List of objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        extra_args: dict[str, Any] = {"_request_timeout": timeout.left()}
        if label_selector:
            extra_args["label_selector"] = label_selector
        try:
            objs = await self._list(namespace, **extra_args)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs.items

    async def wait_for_deletion(
        self,
        name: str,
        namespace: str,
        timeout: Timeout,
        *,
        uid: str | None = None,
    ) -> None:
        """Wait for an object deletion to complete.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            How long to wait for the object to be deleted.
        uid
            If given, wait only for the object with this UID to disappear.
            An object of the same name with a different UID counts as
            deleted.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        logger = self._logger.bind(name=name, namespace=namespace)
        obj = await self.read(name, namespace, timeout)
        if not obj or (uid and obj.metadata.uid != uid):
            return

        # Wait for the object to be deleted, leaving time for a final check
        # if the overall timeout is bounded.
        left = timeout.left()
        if left is None:
            watch_timeout = timeout
        else:
            watch_seconds = max(left - 2, 0)
            watch_timeout = timeout.partial(timedelta(seconds=watch_seconds))
        watcher = KubernetesWatcher(
            method=self._list,
            object_type=self._type,
            kind=self._kind,
            name=name,
            namespace=namespace,
            resource_version=obj.metadata.resource_version,
            timeout=watch_timeout,
            logger=logger,
        )
        try:
            async with watch_timeout.enforce():
                async for event in watcher.watch():
                    if event.action == WatchEventType.DELETED:
                        return
                    if uid and event.object.metadata.uid != uid:
                        return
        except OperationTimeoutError:
            # If the watch had to be restarted because the resource version
            # was too old and the object was deleted while the watch was
            # restarting, we could have missed the delete event. Therefore,
            # before timing out, do a final check with a short timeout to see
            # if the object is gone.
            read_timeout = timeout.partial(timedelta(seconds=2))
            obj = await self.read(name, namespace, read_timeout)
            if not obj or (uid and obj.metadata.uid != uid):
                return
            raise
        finally:
            await watcher.close()

        # This should be impossible; someone called stop on the watcher.
        raise RuntimeError("Wait for object deletion unexpectedly stopped")
