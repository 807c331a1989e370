"""Test that the command-line interface works."""

from __future__ import annotations

import asyncio
import os
import signal
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import yaml
from click.testing import CliRunner
from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
)

from pvinspect import __version__
from pvinspect.cli import _run_interruptible, main
from pvinspect.models.domain.inspection import SessionEnd
from pvinspect.services.proxy import SessionProxy

from .support.kubernetes import (
    MockInspectKubernetesApi,
    fail,
    make_pvc,
    pod_status,
)


@pytest.fixture(autouse=True)
def api_client_config(
    monkeypatch: pytest.MonkeyPatch, mock_kubernetes: MockInspectKubernetesApi
) -> None:
    async def create_api_client(context: str | None) -> ApiClient:
        return client.ApiClient()

    monkeypatch.setattr(
        "pvinspect.factory.create_api_client", create_api_client
    )


def _add_pod(
    mock: MockInspectKubernetesApi, name: str, age: timedelta
) -> None:
    pod = V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace="ns",
            labels={"pv-inspect": "active"},
            creation_timestamp=datetime.now(tz=UTC) - age,
        ),
        status=V1PodStatus(phase="Running"),
    )
    mock.add_pod(pod)


def test_help() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["-h"])
    assert result.exit_code == 0
    assert "Commands:" in result.output

    result = runner.invoke(main, ["help"])
    assert result.exit_code == 0
    assert "Commands:" in result.output

    result = runner.invoke(main, ["help", "inspect"])
    assert result.exit_code == 0
    assert "--mountpoint" in result.output

    result = runner.invoke(main, ["help", "unknown-command"])
    assert result.exit_code != 0


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert result.output.strip() == __version__


def test_list(mock_kubernetes: MockInspectKubernetesApi) -> None:
    for name in ("data-1", "logs"):
        pvc = make_pvc(name, "ns", size="5Gi")
        create = mock_kubernetes.create_namespaced_persistent_volume_claim
        asyncio.run(create("ns", pvc))

    result = CliRunner().invoke(main, ["list", "-n", "ns"])
    assert result.exit_code == 0, result.output
    assert "data-1" in result.output
    assert "logs" in result.output
    assert "5Gi" in result.output

    # Without a claim name, inspect lists the claims instead.
    result = CliRunner().invoke(main, ["inspect", "-n", "ns"])
    assert result.exit_code == 0, result.output
    assert "data-1" in result.output


def test_inspect_missing_claim(
    mock_kubernetes: MockInspectKubernetesApi,
) -> None:
    result = CliRunner().invoke(main, ["inspect", "-n", "ns", "missing"])
    assert result.exit_code == 2
    assert mock_kubernetes.get_pods() == []


def test_bad_options() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["inspect", "-p", "notaport", "data"])
    assert result.exit_code == 2
    result = runner.invoke(main, ["sweep", "--age", "sometime"])
    assert result.exit_code == 2


def test_sweep(mock_kubernetes: MockInspectKubernetesApi) -> None:
    _add_pod(mock_kubernetes, "young", timedelta(minutes=10))
    _add_pod(mock_kubernetes, "old", timedelta(minutes=300))

    result = CliRunner().invoke(main, ["sweep", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert len(mock_kubernetes.get_pods()) == 2

    result = CliRunner().invoke(main, ["sweep", "-n", "ns"])
    assert result.exit_code == 0, result.output
    names = [p.metadata.name for p in mock_kubernetes.get_pods()]
    assert names == ["young"]

    result = CliRunner().invoke(main, ["sweep", "--age", "5m"])
    assert result.exit_code == 0, result.output
    assert mock_kubernetes.get_pods() == []


def test_sweep_failure(mock_kubernetes: MockInspectKubernetesApi) -> None:
    _add_pod(mock_kubernetes, "old", timedelta(minutes=300))
    mock_kubernetes.error_callback = fail(
        "delete_namespaced_pod", status=403, reason="Forbidden"
    )
    result = CliRunner().invoke(main, ["sweep", "--nowait"])
    assert result.exit_code == 2


def test_config_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    mock_kubernetes: MockInspectKubernetesApi,
) -> None:
    _add_pod(mock_kubernetes, "pod", timedelta(minutes=90))
    config_path = tmp_path / "pv-inspect.yaml"
    config_path.write_text(yaml.safe_dump({"sweepAge": "1h"}))

    result = CliRunner().invoke(
        main, ["sweep", "-c", str(config_path), "--dry-run"]
    )
    assert result.exit_code == 0, result.output
    assert len(mock_kubernetes.get_pods()) == 1

    result = CliRunner().invoke(
        main, ["sweep", "-c", str(tmp_path / "missing.yaml")]
    )
    assert result.exit_code == 2

    # The environment variable takes precedence over the option.
    monkeypatch.setenv("PV_INSPECT_CONFIG_FILE", str(config_path))
    result = CliRunner().invoke(
        main, ["sweep", "-c", str(tmp_path / "missing.yaml")]
    )
    assert result.exit_code == 0, result.output
    assert mock_kubernetes.get_pods() == []


def test_templates() -> None:
    result = CliRunner().invoke(main, ["templates"])
    assert result.exit_code == 0, result.output
    assert "ssh" in result.output
    assert "shell" in result.output


def test_inspect_disconnect(
    monkeypatch: pytest.MonkeyPatch,
    mock_kubernetes: MockInspectKubernetesApi,
) -> None:
    pvc = make_pvc("data-1", "ns")
    asyncio.run(
        mock_kubernetes.create_namespaced_persistent_volume_claim("ns", pvc)
    )
    mock_kubernetes.status_on_create = pod_status("Running", ready=True)
    monkeypatch.setattr(
        "pvinspect.services.inspector.READY_SETTLE_DELAY", timedelta(0)
    )
    opened: list[str] = []

    async def open_session(
        self: SessionProxy, session: Any, *args: Any
    ) -> None:
        opened.append(session.pod.name)

    async def run_session(self: SessionProxy, session: Any) -> SessionEnd:
        return SessionEnd.DISCONNECT

    monkeypatch.setattr(SessionProxy, "check", lambda self, *args: None)
    monkeypatch.setattr(SessionProxy, "open", open_session)
    monkeypatch.setattr(SessionProxy, "run", run_session)

    result = CliRunner().invoke(
        main, ["inspect", "-n", "ns", "-t", "shell", "data-1"]
    )
    assert result.exit_code == 0, result.output
    assert len(opened) == 1
    assert opened[0].startswith("pvc-inspect-data-1-")
    assert mock_kubernetes.get_pods() == []


@pytest.mark.asyncio
async def test_run_interruptible() -> None:
    async def session() -> SessionEnd:
        return SessionEnd.DISCONNECT

    async def interrupted_session() -> SessionEnd:
        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.sleep(10)
        return SessionEnd.DISCONNECT

    end = await _run_interruptible(session(), SessionEnd.INTERRUPTED)
    assert end == SessionEnd.DISCONNECT
    end = await _run_interruptible(
        interrupted_session(), SessionEnd.INTERRUPTED
    )
    assert end == SessionEnd.INTERRUPTED
