"""Tests for the Kubernetes watch wrapper."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any, Self

import pytest
from kubernetes_asyncio.client import ApiException, V1ObjectMeta, V1Pod
from structlog.stdlib import BoundLogger

from pvinspect.exceptions import KubernetesError, OperationTimeoutError
from pvinspect.models.domain.kubernetes import WatchEventType
from pvinspect.storage.kubernetes.watcher import KubernetesWatcher
from pvinspect.timeout import Timeout


class ScriptedWatch:
    """Watch that fails or returns events according to a script.

    Each call to `stream` consumes the next entry of the script: either an
    exception to raise or a list of events to return. Once the script is
    exhausted, each stream waits for its timeout and returns nothing.
    """

    script: list[Exception | list[dict[str, Any]]] = []
    calls: list[dict[str, Any]] = []

    def __init__(self, return_type: type | None = None) -> None:
        self.resource_version: str | None = None
        self._kwargs: dict[str, Any] = {}

    def stop(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def stream(self, func: Any, **kwargs: Any) -> Self:
        self.calls.append(kwargs)
        self._kwargs = kwargs
        return self

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        pass

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._events()

    async def _events(self) -> AsyncIterator[dict[str, Any]]:
        if not self.script:
            await asyncio.sleep(self._kwargs["timeout_seconds"])
            return
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        for event in step:
            self.resource_version = event["object"].metadata.resource_version
            yield event


def _event(action: str, name: str, version: str) -> dict[str, Any]:
    pod = V1Pod(
        metadata=V1ObjectMeta(
            name=name, namespace="ns", resource_version=version
        )
    )
    return {"type": action, "object": pod}


@pytest.fixture
def scripted_watch(monkeypatch: pytest.MonkeyPatch) -> type[ScriptedWatch]:
    monkeypatch.setattr(
        "pvinspect.storage.kubernetes.watcher.Watch", ScriptedWatch
    )
    ScriptedWatch.script = []
    ScriptedWatch.calls = []
    return ScriptedWatch


async def _list_pods(**kwargs: Any) -> None:
    raise AssertionError("Watch should not call the list method")


@pytest.mark.asyncio
async def test_watch(
    scripted_watch: type[ScriptedWatch], logger: BoundLogger
) -> None:
    scripted_watch.script = [
        ApiException(status=410, reason="Gone"),
        [_event("ADDED", "pod", "12")],
        [_event("MODIFIED", "pod", "13"), _event("DELETED", "pod", "14")],
    ]
    watcher = KubernetesWatcher(
        method=_list_pods,
        object_type=V1Pod,
        kind="Pod",
        name="pod",
        namespace="ns",
        resource_version="10",
        timeout=Timeout("Test", timedelta(seconds=30)),
        logger=logger,
    )

    actions = []
    async for event in watcher.watch():
        actions.append(event.action)
        if event.action == WatchEventType.DELETED:
            break
    watcher.stop()
    assert actions == [
        WatchEventType.ADDED,
        WatchEventType.MODIFIED,
        WatchEventType.DELETED,
    ]

    # The expired resource version was dropped, and the watch resumed from
    # the last event seen after the server ended the first request.
    calls = scripted_watch.calls
    assert calls[0]["resource_version"] == "10"
    assert calls[0]["field_selector"] == "metadata.name=pod"
    assert "resource_version" not in calls[1]
    assert calls[2]["resource_version"] == "12"
    assert all(0 < c["timeout_seconds"] <= 30 for c in calls)


@pytest.mark.asyncio
async def test_watch_error(
    scripted_watch: type[ScriptedWatch], logger: BoundLogger
) -> None:
    scripted_watch.script = [ApiException(status=403, reason="Forbidden")]
    watcher = KubernetesWatcher(
        method=_list_pods,
        object_type=V1Pod,
        kind="Pod",
        namespace="ns",
        timeout=None,
        logger=logger,
    )
    with pytest.raises(KubernetesError, match="Forbidden"):
        async for _ in watcher.watch():
            pass


@pytest.mark.asyncio
async def test_watch_timeout(
    scripted_watch: type[ScriptedWatch], logger: BoundLogger
) -> None:
    timeout = Timeout("Test", timedelta(seconds=1))
    watcher = KubernetesWatcher(
        method=_list_pods,
        object_type=V1Pod,
        kind="Pod",
        namespace="ns",
        timeout=timeout,
        logger=logger,
    )
    with pytest.raises(OperationTimeoutError):
        async with timeout.enforce():
            async for _ in watcher.watch():
                pass
