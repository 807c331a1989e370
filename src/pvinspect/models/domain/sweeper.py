"""Models for the stale pod sweeper."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Self

from kubernetes_asyncio.client import V1Pod

from ...constants import LABEL_DELETE, LABEL_KEY

__all__ = ["StalePodRecord", "SweepReport"]


@dataclass(frozen=True)
class StalePodRecord:
    """Snapshot of a pod carrying the marker label."""

    name: str
    """Name of the pod."""

    namespace: str
    """Namespace of the pod."""

    uid: str
    """Unique identifier of the pod."""

    created: datetime
    """Creation timestamp of the pod."""

    marker: str | None
    """Value of the marker label."""

    @classmethod
    def from_pod(cls, pod: V1Pod) -> Self:
        """Create from a Kubernetes API object.

        Parameters
        ----------
        pod
            Pod as returned by a list call.

        Returns
        -------
        StalePodRecord
            The corresponding record.
        """
        labels = pod.metadata.labels or {}
        created = pod.metadata.creation_timestamp
        if created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return cls(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            uid=pod.metadata.uid,
            created=created,
            marker=labels.get(LABEL_KEY),
        )

    def age(self, now: datetime) -> timedelta:
        """Age of the pod at the given time."""
        return now - self.created

    def is_eligible(self, now: datetime, threshold: timedelta) -> bool:
        """Whether the sweeper should delete this pod.

        Parameters
        ----------
        now
            Current time.
        threshold
            Pods older than this are deleted.

        Returns
        -------
        bool
            `True` if the pod is older than the threshold or has been marked
            for deferred deletion.
        """
        return self.marker == LABEL_DELETE or self.age(now) > threshold

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class SweepReport:
    """Results of a sweep."""

    candidates: list[StalePodRecord] = field(default_factory=list)
    """Pods found eligible for deletion."""

    deleted: list[StalePodRecord] = field(default_factory=list)
    """Pods successfully deleted."""

    failed: list[StalePodRecord] = field(default_factory=list)
    """Pods whose deletion failed."""
