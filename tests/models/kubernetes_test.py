"""Tests for the pod readiness predicate and pod handles."""

from __future__ import annotations

import copy

from kubernetes_asyncio.client import V1ObjectMeta, V1Pod, V1PodStatus

from pvinspect.models.domain.kubernetes import (
    PodHandle,
    Readiness,
    pod_readiness,
)

from ..support.kubernetes import pod_status


def _pod(status: V1PodStatus | None) -> V1Pod:
    return V1Pod(
        metadata=V1ObjectMeta(name="pod", namespace="ns", uid="1234"),
        status=status,
    )


def test_missing() -> None:
    assert pod_readiness(None) == Readiness.NOT_READY
    assert pod_readiness(_pod(None)) == Readiness.NOT_READY


def test_pending() -> None:
    pod = _pod(pod_status("Pending"))
    assert pod_readiness(pod) == Readiness.NOT_READY
    pod = _pod(pod_status("Pending", waiting="ContainerCreating"))
    assert pod_readiness(pod) == Readiness.NOT_READY


def test_running_not_ready() -> None:
    pod = _pod(pod_status("Running", ready=False))
    assert pod_readiness(pod) == Readiness.NOT_READY


def test_ready() -> None:
    pod = _pod(pod_status("Running", ready=True))
    assert pod_readiness(pod) == Readiness.READY

    # A running pod with no container statuses yet has nothing not ready.
    pod = _pod(V1PodStatus(phase="Running"))
    assert pod_readiness(pod) == Readiness.READY


def test_ready_monotonic() -> None:
    status = pod_status("Running", ready=True)
    ready = status.container_statuses[0]
    waiting = copy.deepcopy(ready)
    waiting.name = "sidecar"
    waiting.ready = False
    status.container_statuses = [ready, waiting]
    assert pod_readiness(_pod(status)) == Readiness.NOT_READY

    # Once running, more ready containers never make a pod less ready.
    for count in range(2, 5):
        statuses = []
        for i in range(count):
            container = copy.deepcopy(ready)
            container.name = f"container-{i}"
            statuses.append(container)
        status = V1PodStatus(phase="Running", container_statuses=statuses)
        assert pod_readiness(_pod(status)) == Readiness.READY


def test_failed() -> None:
    for phase in ("Failed", "Succeeded"):
        pod = _pod(pod_status(phase))
        assert pod_readiness(pod) == Readiness.FAILED
    for reason in ("ErrImageNeverPull", "InvalidImageName"):
        pod = _pod(pod_status("Pending", waiting=reason))
        assert pod_readiness(pod) == Readiness.FAILED


def test_handle() -> None:
    handle = PodHandle.from_pod(_pod(None))
    assert handle == PodHandle(name="pod", namespace="ns", uid="1234")
    assert str(handle) == "ns/pod"
