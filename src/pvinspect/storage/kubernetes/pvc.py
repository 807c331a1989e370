"""Kubernetes storage layer for ``PersistentVolumeClaim`` objects."""

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, V1PersistentVolumeClaim
from structlog.stdlib import BoundLogger

from .base import KubernetesObjectStorage

__all__ = ["PersistentVolumeClaimStorage"]


class PersistentVolumeClaimStorage(
    KubernetesObjectStorage[V1PersistentVolumeClaim]
):
    """Storage layer for ``PersistentVolumeClaim`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            create_method=api.create_namespaced_persistent_volume_claim,
            delete_method=api.delete_namespaced_persistent_volume_claim,
            list_method=api.list_namespaced_persistent_volume_claim,
            read_method=api.read_namespaced_persistent_volume_claim,
            object_type=V1PersistentVolumeClaim,
            kind="PersistentVolumeClaim",
            logger=logger,
        )
