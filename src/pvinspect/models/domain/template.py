"""Model for inspection pod templates."""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

__all__ = ["PodTemplate"]


class PodTemplate(BaseModel):
    """Base pod definition into which the inspected claim is mounted.

    Templates are stored as YAML. The ``pod`` key holds a pod object in
    Kubernetes API form, of which only ``metadata.labels``,
    ``metadata.annotations``, and ``spec`` are used.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: str = Field(..., title="Name of the template")

    description: str = Field("", title="Human-readable description")

    credential: bool = Field(
        False,
        title="Whether the pod needs the session public key",
        description=(
            "If true, a fresh key pair is generated for each session and the"
            " public key is passed to every container in the PUBLIC_KEY"
            " environment variable."
        ),
    )

    shell: str = Field(
        "/bin/sh",
        title="Shell to run for interactive sessions",
        description="Started in the directory where the claim is mounted.",
    )

    ssh_port: int | None = Field(
        None,
        title="Port of the SSH server in the pod",
        description="Required for local mounts with sshfs.",
        gt=0,
        lt=65536,
    )

    ssh_user: str | None = Field(
        None, title="User to authenticate as to the SSH server"
    )

    pod: dict[str, Any] = Field(..., title="Base pod object")

    @model_validator(mode="after")
    def _validate_pod(self) -> Self:
        spec = self.pod.get("spec")
        if not isinstance(spec, dict):
            raise ValueError("pod.spec must be a mapping")
        containers = spec.get("containers")
        if not isinstance(containers, list) or not containers:
            raise ValueError("pod.spec.containers must be a non-empty list")
        if self.ssh_port is not None and not self.ssh_user:
            raise ValueError("sshUser is required if sshPort is set")
        return self

    @property
    def supports_mount(self) -> bool:
        """Whether the template's pod can serve an sshfs mount."""
        return self.ssh_port is not None and self.credential

    @property
    def spec(self) -> dict[str, Any]:
        """Pod ``spec`` section of the template."""
        return self.pod["spec"]

    @property
    def labels(self) -> dict[str, str]:
        """Labels from the template metadata."""
        return dict(self.pod.get("metadata", {}).get("labels") or {})

    @property
    def annotations(self) -> dict[str, str]:
        """Annotations from the template metadata."""
        return dict(self.pod.get("metadata", {}).get("annotations") or {})
