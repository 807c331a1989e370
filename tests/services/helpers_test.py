"""Tests for the port-forward and sshfs helper processes."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest
from structlog.stdlib import BoundLogger

from pvinspect.exceptions import HelperProcessError
from pvinspect.models.domain.inspection import PortBinding
from pvinspect.models.domain.kubernetes import PodHandle
from pvinspect.services.helpers import (
    PortForwarder,
    SshfsMounter,
    check_executable,
    find_free_port,
)

POD = PodHandle(name="pvc-inspect-data-abcde", namespace="ns", uid="1234")


def _script(path: Path, body: str) -> Path:
    """Write an executable shell script that records its arguments."""
    args_file = path.with_suffix(".args")
    path.write_text(f'#!/bin/sh\necho "$@" > {args_file}\n{body}\n')
    path.chmod(0o755)
    return args_file


async def _wait_for_file(path: Path) -> str:
    async with asyncio.timeout(5):
        while not path.exists() or not path.read_text():
            await asyncio.sleep(0.05)
    return path.read_text().strip()


def test_check_executable() -> None:
    check_executable("sh")
    with pytest.raises(HelperProcessError, match="not found"):
        check_executable("pv-inspect-nonexistent")


def test_find_free_port() -> None:
    port = find_free_port()
    assert 0 < port < 65536


@pytest.mark.asyncio
async def test_port_forward(tmp_path: Path, logger: BoundLogger) -> None:
    kubectl = tmp_path / "kubectl"
    args_file = _script(
        kubectl, 'echo "Forwarding from 127.0.0.1:8080 -> 80"\nexec sleep 60'
    )
    forwarder = PortForwarder(
        kubectl=str(kubectl), context="dev", logger=logger
    )
    bindings = [PortBinding(8080, 80), PortBinding(2200, 2222)]

    helper = await forwarder.start(POD, bindings)
    try:
        assert helper.name == "port-forward"
        assert helper.returncode is None
        args = await _wait_for_file(args_file)
        assert args == (
            "--context dev --namespace ns port-forward --address 127.0.0.1"
            " pod/pvc-inspect-data-abcde 8080:80 2200:2222"
        )
    finally:
        await helper.stop()
    assert helper.returncode is not None

    # Stopping twice is harmless.
    await helper.stop()


@pytest.mark.asyncio
async def test_port_forward_fails(
    tmp_path: Path, logger: BoundLogger
) -> None:
    kubectl = tmp_path / "kubectl"
    _script(kubectl, "exit 1")
    forwarder = PortForwarder(
        kubectl=str(kubectl), context=None, logger=logger
    )
    with pytest.raises(HelperProcessError, match="exit status 1"):
        await forwarder.start(POD, [PortBinding(8080, 80)])

    forwarder = PortForwarder(
        kubectl=str(tmp_path / "missing"), context=None, logger=logger
    )
    with pytest.raises(HelperProcessError):
        await forwarder.start(POD, [PortBinding(8080, 80)])


@pytest.mark.asyncio
async def test_sshfs(tmp_path: Path, logger: BoundLogger) -> None:
    sshfs = tmp_path / "sshfs"
    args_file = _script(sshfs, "exec sleep 60")
    mounter = SshfsMounter(sshfs=str(sshfs), logger=logger)
    mountpoint = tmp_path / "mnt" / "data"
    key = tmp_path / "key"

    helper = await mounter.mount(
        port=2200,
        user="ssh",
        remote_path="/data",
        mountpoint=mountpoint,
        identity_file=key,
        read_only=True,
    )
    try:
        assert mountpoint.is_dir()
        args = (await _wait_for_file(args_file)).split()
        assert args[:5] == [
            "ssh@127.0.0.1:/data",
            str(mountpoint),
            "-f",
            "-p",
            "2200",
        ]
        assert f"IdentityFile={key}" in args
        assert "StrictHostKeyChecking=no" in args
        assert args[-2:] == ["-o", "ro"]
    finally:
        await helper.stop()


@pytest.mark.asyncio
async def test_port_forward_cancelled(
    tmp_path: Path, logger: BoundLogger
) -> None:
    kubectl = tmp_path / "kubectl"
    pid_file = tmp_path / "kubectl.pid"
    _script(kubectl, f"echo $$ > {pid_file}\nexec sleep 60")
    forwarder = PortForwarder(
        kubectl=str(kubectl), context=None, logger=logger
    )

    # kubectl never reports that forwarding started, so start blocks until
    # it is cancelled. The process must not outlive the cancellation.
    task = asyncio.create_task(forwarder.start(POD, [PortBinding(8080, 80)]))
    pid = int(await _wait_for_file(pid_file))
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
