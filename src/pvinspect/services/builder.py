"""Construction of inspection pod definitions."""

import copy
from typing import Any

from ..constants import (
    GENERATE_NAME_LENGTH,
    LABEL_ACTIVE,
    LABEL_KEY,
    MOUNT_PATH,
    NAME_PREFIX,
    PUBLIC_KEY_ENV,
    VOLUME_NAME,
)
from ..exceptions import InvalidTemplateError
from ..models.domain.credentials import CredentialPair
from ..models.domain.inspection import InspectionRequest, PodDescriptor
from ..models.domain.template import PodTemplate

__all__ = ["PodSpecBuilder"]


class PodSpecBuilder:
    """Construct the pod for an inspection session from a template.

    This is a pure transformation of its inputs and makes no Kubernetes
    calls. The template is never modified.

    Parameters
    ----------
    template
        Base pod template.
    """

    def __init__(self, template: PodTemplate) -> None:
        self._template = template

    def build(
        self,
        request: InspectionRequest,
        credentials: CredentialPair | None = None,
    ) -> PodDescriptor:
        """Build the pod for a request.

        Parameters
        ----------
        request
            Inspection request.
        credentials
            Session credentials. Required if the template uses a credential
            and ignored otherwise.

        Returns
        -------
        PodDescriptor
            Pod ready to be created.

        Raises
        ------
        InvalidTemplateError
            Raised if the template already defines a volume with the name
            used for the claim.
        ValueError
            Raised if the template needs credentials and none were given.
        """
        if self._template.credential and credentials is None:
            msg = f"Template {self._template.name} requires credentials"
            raise ValueError(msg)
        spec = copy.deepcopy(self._template.spec)
        read_only = request.access_mode.read_only

        volumes = spec.setdefault("volumes", [])
        if any(v.get("name") == VOLUME_NAME for v in volumes):
            msg = (
                f"Template {self._template.name} already has a volume named"
                f" {VOLUME_NAME}"
            )
            raise InvalidTemplateError(msg)
        volumes.append(
            {
                "name": VOLUME_NAME,
                "persistentVolumeClaim": {
                    "claimName": request.pvc,
                    "readOnly": read_only,
                },
            }
        )

        env = []
        if self._template.credential and credentials:
            key = credentials.public_key
            env.append({"name": PUBLIC_KEY_ENV, "value": key})
        for container in spec["containers"]:
            self._update_container(container, read_only, env)

        labels = self._template.labels
        labels[LABEL_KEY] = LABEL_ACTIVE
        return PodDescriptor(
            generate_name=self._build_generate_name(request.pvc),
            namespace=request.namespace,
            labels=labels,
            spec=spec,
            annotations=self._template.annotations,
        )

    def _build_generate_name(self, pvc: str) -> str:
        prefix = f"{NAME_PREFIX}{pvc}"[: GENERATE_NAME_LENGTH - 1]
        return prefix.rstrip("-.") + "-"

    def _update_container(
        self,
        container: dict[str, Any],
        read_only: bool,
        env: list[dict[str, str]],
    ) -> None:
        mount = {
            "name": VOLUME_NAME,
            "mountPath": MOUNT_PATH,
            "readOnly": read_only,
        }
        container.setdefault("volumeMounts", []).append(mount)
        if env:
            container_env = container.setdefault("env", [])
            container_env.extend(copy.deepcopy(env))
