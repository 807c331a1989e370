"""Models for an inspection session request."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Self

__all__ = [
    "AccessMode",
    "InspectionRequest",
    "PodDescriptor",
    "PortBinding",
    "SessionEnd",
]


class AccessMode(Enum):
    """How the inspected claim is mounted into the pod."""

    READ_ONLY = "ReadOnly"
    READ_WRITE = "ReadWrite"

    @property
    def read_only(self) -> bool:
        """Whether volumes and mounts should be flagged read-only."""
        return self == AccessMode.READ_ONLY


class SessionEnd(Enum):
    """Why an inspection session ended."""

    CHANNEL_CLOSED = "channel-closed"
    """The shell in the pod exited or the exec connection closed."""

    INPUT_CLOSED = "input-closed"
    """The local input stream reached end of file."""

    DISCONNECT = "disconnect"
    """The operator typed the escape sequence."""

    HELPER_EXITED = "helper-exited"
    """A port-forward or mount helper process exited."""

    INTERRUPTED = "interrupted"
    """The process received an interrupt or termination signal."""


@dataclass(frozen=True)
class PortBinding:
    """Forward a local port to a port in the pod."""

    host_port: int
    """Port on 127.0.0.1 on the local host."""

    pod_port: int
    """Port inside the pod."""

    @classmethod
    def parse(cls, spec: str) -> Self:
        """Parse a binding given as ``host:pod`` or a single port.

        Parameters
        ----------
        spec
            Binding specification. A single port uses the same number on
            both sides.

        Returns
        -------
        PortBinding
            Parsed binding.

        Raises
        ------
        ValueError
            Raised if the specification is not valid.
        """
        host, sep, pod = spec.partition(":")
        binding = cls(host_port=int(host), pod_port=int(pod if sep else host))
        for port in (binding.host_port, binding.pod_port):
            if not 0 < port < 65536:
                raise ValueError(f"Port {port} out of range")
        return binding

    def __str__(self) -> str:
        return f"{self.host_port}:{self.pod_port}"


@dataclass(frozen=True)
class InspectionRequest:
    """An operator's request to inspect one persistent volume claim."""

    namespace: str
    """Namespace of the claim and of the inspection pod."""

    pvc: str
    """Name of the persistent volume claim."""

    access_mode: AccessMode = AccessMode.READ_ONLY
    """How to mount the claim."""

    mountpoint: Path | None = None
    """Local directory at which to mount the claim with sshfs, if any."""

    port: PortBinding | None = None
    """Additional port to forward from the local host into the pod."""

    template: str = "ssh"
    """Name of the pod template to use."""

    shell: bool = True
    """Whether to run an interactive shell in the pod."""

    wait_for_deletion: bool = True
    """Whether to wait for the pod to be gone before exiting."""

    @property
    def needs_tunnel(self) -> bool:
        """Whether the session needs a port-forward helper process."""
        return self.mountpoint is not None or self.port is not None


@dataclass(frozen=True)
class PodDescriptor:
    """Concrete definition of an inspection pod, ready to submit."""

    generate_name: str
    """Prefix from which Kubernetes generates the pod name."""

    namespace: str
    """Namespace in which to create the pod."""

    labels: dict[str, str]
    """Labels, including the marker label."""

    spec: dict[str, Any]
    """Pod ``spec`` in Kubernetes API form."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations carried over from the template."""

    def to_manifest(self) -> dict[str, Any]:
        """Build the body for the pod creation call.

        Returns
        -------
        dict
            Pod object in Kubernetes API form. The result does not share any
            mutable state with the descriptor.
        """
        metadata: dict[str, Any] = {
            "generateName": self.generate_name,
            "namespace": self.namespace,
            "labels": dict(self.labels),
        }
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": metadata,
            "spec": copy.deepcopy(self.spec),
        }
