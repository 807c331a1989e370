"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import Any, Protocol, Self

from kubernetes_asyncio.client import V1ObjectMeta, V1Pod

__all__ = [
    "KubernetesModel",
    "PodHandle",
    "PodPhase",
    "PodState",
    "Readiness",
    "WatchEventType",
    "pod_readiness",
]

_UNRECOVERABLE_WAITING_REASONS = frozenset(
    {"ErrImageNeverPull", "InvalidImageName"}
)
"""Container waiting reasons from which the pod will never become ready."""


class KubernetesModel(Protocol):
    """Protocol for Kubernetes object models.

    Tells mypy that all the object models we deal with will have a metadata
    attribute.
    """

    metadata: V1ObjectMeta

    def to_dict(self) -> dict[str, Any]: ...


class PodPhase(StrEnum):
    """One of the valid phases reported in the status section of a Pod."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class PodState(Enum):
    """Lifecycle state of an inspection pod, as tracked by pv-inspect.

    The pod moves through these states in order. ``TERMINATING`` is reached
    either by deleting the pod or by relabeling it for the sweeper.
    """

    REQUESTED = "requested"
    CREATED = "created"
    PENDING = "pending"
    READY = "ready"
    TERMINATING = "terminating"
    DELETED = "deleted"


class Readiness(Enum):
    """Result of evaluating the readiness predicate on a pod snapshot."""

    NOT_READY = "not-ready"
    READY = "ready"
    FAILED = "failed"


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class PodHandle:
    """Identity of a pod created by pv-inspect.

    The name is assigned by Kubernetes from the generated name prefix, and
    the UID distinguishes this pod from any later pod with the same name.
    """

    name: str
    """Name of the pod."""

    namespace: str
    """Namespace of the pod."""

    uid: str
    """Unique identifier assigned by Kubernetes."""

    @classmethod
    def from_pod(cls, pod: V1Pod) -> Self:
        """Create from a Kubernetes API object.

        Parameters
        ----------
        pod
            Pod returned by the create call.

        Returns
        -------
        PodHandle
            The corresponding handle.
        """
        return cls(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            uid=pod.metadata.uid,
        )

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def pod_readiness(pod: V1Pod | None) -> Readiness:
    """Evaluate whether a pod is ready for an inspection session.

    A pod is ready when its phase is ``Running`` and every reported container
    status is ready. A running phase alone is not enough, since containers
    may still be starting. A pod that has exited, or has a container that
    can never start, has failed.

    Parameters
    ----------
    pod
        Snapshot of the pod, or `None` if it could not be found.

    Returns
    -------
    Readiness
        Tri-state readiness of the snapshot.
    """
    if pod is None or pod.status is None:
        return Readiness.NOT_READY
    phase = pod.status.phase
    if phase in (PodPhase.FAILED, PodPhase.SUCCEEDED):
        return Readiness.FAILED
    statuses = pod.status.container_statuses or []
    for status in statuses:
        waiting = status.state.waiting if status.state else None
        if waiting and waiting.reason in _UNRECOVERABLE_WAITING_REASONS:
            return Readiness.FAILED
    if phase != PodPhase.RUNNING:
        return Readiness.NOT_READY
    if all(s.ready for s in statuses):
        return Readiness.READY
    return Readiness.NOT_READY
