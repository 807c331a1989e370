"""Tests for the stale pod sweeper."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from kubernetes_asyncio.client import V1ObjectMeta, V1Pod, V1PodStatus
from structlog.stdlib import BoundLogger

from pvinspect.constants import DEFAULT_SWEEP_AGE
from pvinspect.exceptions import KubernetesError
from pvinspect.services.sweeper import StalePodSweeper
from pvinspect.storage.kubernetes.pod import PodStorage

from ..support.kubernetes import MockInspectKubernetesApi, fail

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def sweeper(pod_storage: PodStorage, logger: BoundLogger) -> StalePodSweeper:
    return StalePodSweeper(
        pod_storage, delete_timeout=timedelta(seconds=10), logger=logger
    )


def _add_pod(
    mock: MockInspectKubernetesApi,
    name: str,
    age: timedelta,
    *,
    namespace: str = "ns",
    labels: dict[str, str] | None = None,
) -> None:
    if labels is None:
        labels = {"pv-inspect": "active"}
    pod = V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels,
            creation_timestamp=NOW - age,
        ),
        status=V1PodStatus(phase="Running"),
    )
    mock.add_pod(pod)


@pytest.mark.asyncio
async def test_find(
    sweeper: StalePodSweeper, mock_kubernetes: MockInspectKubernetesApi
) -> None:
    for minutes in (10, 300, 500):
        age = timedelta(minutes=minutes)
        _add_pod(mock_kubernetes, f"pod-{minutes}", age)
    _add_pod(
        mock_kubernetes,
        "marked",
        timedelta(minutes=2),
        labels={"pv-inspect": "delete"},
    )
    _add_pod(mock_kubernetes, "unrelated", timedelta(days=10), labels={})
    _add_pod(
        mock_kubernetes, "elsewhere", timedelta(days=1), namespace="other"
    )

    records = await sweeper.find(DEFAULT_SWEEP_AGE, namespace="ns", now=NOW)
    assert [r.name for r in records] == ["pod-500", "pod-300", "marked"]

    records = await sweeper.find(DEFAULT_SWEEP_AGE, now=NOW)
    assert [r.name for r in records] == [
        "elsewhere",
        "pod-500",
        "pod-300",
        "marked",
    ]


@pytest.mark.asyncio
async def test_sweep(
    sweeper: StalePodSweeper, mock_kubernetes: MockInspectKubernetesApi
) -> None:
    for minutes in (10, 300, 500):
        age = timedelta(minutes=minutes)
        _add_pod(mock_kubernetes, f"pod-{minutes}", age)
    _add_pod(
        mock_kubernetes,
        "marked",
        timedelta(minutes=2),
        labels={"pv-inspect": "delete"},
    )

    report = await sweeper.sweep(DEFAULT_SWEEP_AGE, now=NOW)
    deleted = [r.name for r in report.deleted]
    assert deleted == ["pod-500", "pod-300", "marked"]
    assert report.failed == []
    assert [p.metadata.name for p in mock_kubernetes.get_pods()] == [
        "pod-10"
    ]

    # Running again finds nothing.
    report = await sweeper.sweep(DEFAULT_SWEEP_AGE, now=NOW)
    assert report.candidates == []


@pytest.mark.asyncio
async def test_dry_run(
    sweeper: StalePodSweeper, mock_kubernetes: MockInspectKubernetesApi
) -> None:
    for minutes in (10, 300, 500):
        age = timedelta(minutes=minutes)
        _add_pod(mock_kubernetes, f"pod-{minutes}", age)

    report = await sweeper.sweep(DEFAULT_SWEEP_AGE, dry_run=True, now=NOW)
    assert [r.name for r in report.candidates] == ["pod-500", "pod-300"]
    assert report.deleted == []
    assert len(mock_kubernetes.get_pods()) == 3


@pytest.mark.asyncio
async def test_failure(
    sweeper: StalePodSweeper, mock_kubernetes: MockInspectKubernetesApi
) -> None:
    _add_pod(mock_kubernetes, "old", timedelta(minutes=300))
    mock_kubernetes.error_callback = fail(
        "delete_namespaced_pod", status=403, reason="Forbidden"
    )

    report = await sweeper.sweep(DEFAULT_SWEEP_AGE, wait=False, now=NOW)
    assert [r.name for r in report.failed] == ["old"]
    assert report.deleted == []

    mock_kubernetes.error_callback = fail(
        "list_pod_for_all_namespaces", status=403, reason="Forbidden"
    )
    with pytest.raises(KubernetesError):
        await sweeper.sweep(DEFAULT_SWEEP_AGE, now=NOW)
