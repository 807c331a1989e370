"""Models for listing persistent volume claims."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Self

from kubernetes_asyncio.client import V1PersistentVolumeClaim

__all__ = ["PersistentVolumeClaimSummary"]


@dataclass(frozen=True)
class PersistentVolumeClaimSummary:
    """Summary of a claim for the listing mode."""

    name: str
    """Name of the claim."""

    created: datetime | None
    """Creation timestamp."""

    size: str | None
    """Requested storage, as a Kubernetes quantity."""

    access_modes: list[str]
    """Access modes of the claim."""

    phase: str | None
    """Binding phase of the claim."""

    @classmethod
    def from_pvc(cls, pvc: V1PersistentVolumeClaim) -> Self:
        """Create from a Kubernetes API object."""
        requests = {}
        if pvc.spec and pvc.spec.resources and pvc.spec.resources.requests:
            requests = pvc.spec.resources.requests
        return cls(
            name=pvc.metadata.name,
            created=pvc.metadata.creation_timestamp,
            size=requests.get("storage"),
            access_modes=list(pvc.spec.access_modes or []) if pvc.spec else [],
            phase=pvc.status.phase if pvc.status else None,
        )
