"""Watch a Kubernetes namespace or cluster for events."""

import math
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Self

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType
from ...timeout import Timeout

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass
class WatchEvent[T]:
    """Parsed event from a Kubernetes watch.

    This model is intended only for use within the Kubernetes storage layer.
    """

    action: WatchEventType
    """Action the event represents."""

    object: T
    """Affected Kubernetes object."""

    @classmethod
    def from_event(cls, event: dict[str, Any], object_type: type[T]) -> Self:
        """Create a `WatchEvent` from a watch event.

        Parameters
        ----------
        event
            Event as returned by the Kubernetes watch API.
        object_type
            Expected type of the object.

        Raises
        ------
        TypeError
            Raised if the type of the object in the watch event was incorrect.
        """
        action = WatchEventType(event["type"])
        obj = event["object"]
        if not isinstance(obj, object_type):
            real_type = type(obj).__name__
            expected_type = object_type.__name__
            msg = f"Watch object was of type {real_type}, not {expected_type}"
            raise TypeError(msg)
        return cls(action=action, object=obj)


class KubernetesWatcher[T]:
    """Watch Kubernetes for events.

    This wrapper around the watch API of the Kubernetes client implements
    retries and resource version handling. When the server ends a watch
    request, the watch is restarted after the last event seen.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. Passed to the client explicitly rather
        than relying on its docstring-based type discovery.
    kind
        Kubernetes kind of object being watched, for error reporting.
    name
        Name of object to watch.
    namespace
        Namespace to watch.
    label_selector
        Only watch objects matching this label selector.
    resource_version
        Resource version at which to start the watch.
    timeout
        Timeout for the watch. This may be `None`, in which case the watch
        continues until stopped or until the iterator is no longer called.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
        label_selector: str | None = None,
        resource_version: str | None = None,
        timeout: Timeout | None,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._namespace = namespace
        self._name = name
        self._logger = logger
        self._timeout = timeout
        self._stopped = False

        args: dict[str, str | None] = {
            "field_selector": f"metadata.name={name}" if name else None,
            "label_selector": label_selector,
            "namespace": namespace,
            "resource_version": resource_version,
        }
        self._args: dict[str, Any] = {
            k: v for k, v in args.items() if v is not None
        }
        self._watch = Watch(return_type=object_type)

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    def stop(self) -> None:
        """Stop a watch in progress."""
        self._watch.stop()
        self._stopped = True

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Watch Kubernetes for events.

        If we started watching with a specific resource version, that resource
        version may be too old to still be known to Kubernetes, in which case
        the API call returns a 410 error and we should retry without a
        resource version. This is handled automatically. Unfortunately, this
        has a race condition where we may miss events that come in after the
        error is returned but before we retry the API call.

        Yields
        ------
        WatchEvent
            Parsed event.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server during the
            watch.
        TimeoutError
            Raised if the client-side request timeout was reached.
        """
        args = self._args.copy()
        while True:
            left = self._timeout.left() if self._timeout else None
            if left is not None:
                args["_request_timeout"] = left
                args["timeout_seconds"] = max(math.ceil(left), 1)
            try:
                async with self._watch.stream(self._method, **args) as s:
                    async for event in s:
                        yield WatchEvent.from_event(event, self._type)

                # Server timeouts end the iterator, as does calling stop.
                # The control plane may end a watch before the requested
                # timeout, so anything other than stop resumes the watch
                # after the last event seen.
                if self._stopped:
                    break
                if self._watch.resource_version:
                    args["resource_version"] = self._watch.resource_version
            except ApiException as e:
                if e.status == 410:
                    if "resource_version" in args:
                        rv = args["resource_version"]
                        msg = f"Resource version {rv} expired, retrying watch"
                        self._logger.info(msg)
                        del args["resource_version"]
                    else:
                        msg = "Watch expired (no resource version), retrying"
                        self._logger.info(msg)
                    continue

                raise KubernetesError.from_exception(
                    "Error watching objects",
                    e,
                    kind=self._kind,
                    namespace=self._namespace,
                    name=self._name,
                ) from e
