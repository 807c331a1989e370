"""Test fixtures for pv-inspect tests."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest
import pytest_asyncio
import structlog
from kubernetes_asyncio import client
from safir.testing.kubernetes import patch_kubernetes
from structlog.stdlib import BoundLogger

from pvinspect.config import Config
from pvinspect.constants import ROOT_LOGGER
from pvinspect.factory import Factory
from pvinspect.storage.kubernetes import watcher
from pvinspect.storage.kubernetes.pod import PodStorage
from pvinspect.storage.kubernetes.pvc import PersistentVolumeClaimStorage

from .support.kubernetes import MockInspectKubernetesApi, MockWatch


@pytest.fixture(autouse=True)
def environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[None]:
    """Isolate tests from the user's configuration."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("PV_INSPECT_CONFIG_FILE", raising=False)
    monkeypatch.setattr(
        "pvinspect.config.CONFIG_FILE", tmp_path / "config.yaml"
    )
    yield


@pytest.fixture
def config() -> Config:
    """Construct default configuration for tests."""
    return Config()


@pytest.fixture
def logger() -> BoundLogger:
    return structlog.get_logger(ROOT_LOGGER)


@pytest.fixture
def mock_kubernetes() -> Iterator[MockInspectKubernetesApi]:
    """Replace the Kubernetes API with a mock."""
    mock_api = MockInspectKubernetesApi()
    with patch_kubernetes():
        with (
            patch.object(client, "CoreV1Api", return_value=mock_api),
            patch.object(watcher, "Watch", MockWatch),
        ):
            yield mock_api


@pytest_asyncio.fixture
async def api_client(mock_kubernetes: MockInspectKubernetesApi) -> ApiClient:
    return client.ApiClient()


@pytest.fixture
def pod_storage(
    api_client: ApiClient, logger: BoundLogger
) -> PodStorage:
    return PodStorage(api_client, logger)


@pytest.fixture
def pvc_storage(
    api_client: ApiClient, logger: BoundLogger
) -> PersistentVolumeClaimStorage:
    return PersistentVolumeClaimStorage(api_client, logger)


@pytest.fixture
def factory(
    config: Config, api_client: ApiClient, logger: BoundLogger
) -> Factory:
    return Factory(config, api_client, logger)
