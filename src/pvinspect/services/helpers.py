"""Local helper processes supporting an inspection session.

Port forwarding uses ``kubectl port-forward`` and local mounts use
``sshfs``. Both run as subordinate processes that are started after the pod
is ready and stopped during cleanup.
"""

from __future__ import annotations

import asyncio
import contextlib
import shutil
import socket
from asyncio.subprocess import DEVNULL, PIPE, Process
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path

from structlog.stdlib import BoundLogger

from ..constants import HELPER_STOP_TIMEOUT
from ..exceptions import HelperProcessError
from ..models.domain.inspection import PortBinding
from ..models.domain.kubernetes import PodHandle

__all__ = [
    "HelperProcess",
    "PortForwarder",
    "SshfsMounter",
    "check_executable",
    "find_free_port",
]


def check_executable(program: str) -> None:
    """Verify that a helper program is available.

    Raises
    ------
    HelperProcessError
        Raised if the program cannot be found.
    """
    if not shutil.which(program):
        raise HelperProcessError(f"`{program}` not found in PATH")


def find_free_port() -> int:
    """Find an unused TCP port on the loopback interface.

    Another process may claim the port before it is used, but the window is
    short.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def _spawn(
    name: str, args: Sequence[str], *, capture_stdout: bool = False
) -> Process:
    try:
        return await asyncio.create_subprocess_exec(
            *args,
            stdin=DEVNULL,
            stdout=PIPE if capture_stdout else DEVNULL,
            stderr=DEVNULL,
            start_new_session=True,
        )
    except FileNotFoundError as e:
        raise HelperProcessError(f"`{args[0]}` not found in PATH") from e
    except OSError as e:
        raise HelperProcessError(f"Cannot start {name}: {e}") from e


async def _reap(process: Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    async with asyncio.timeout(HELPER_STOP_TIMEOUT.total_seconds()):
        await process.wait()


class HelperProcess:
    """A running helper process.

    Parameters
    ----------
    name
        Human-readable name, for logging.
    process
        The process.
    logger
        Logger to use.
    """

    def __init__(
        self, name: str, process: Process, logger: BoundLogger
    ) -> None:
        self.name = name
        self._process = process
        self._logger = logger.bind(helper=name, pid=process.pid)
        self._drain: asyncio.Task[None] | None = None
        if process.stdout:
            self._drain = asyncio.create_task(self._drain_output())

    @property
    def returncode(self) -> int | None:
        """Exit status, or `None` if the process is still running."""
        return self._process.returncode

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status."""
        return await self._process.wait()

    async def stop(self, timeout: timedelta = HELPER_STOP_TIMEOUT) -> None:
        """Kill the process if it is still running and reap it.

        Calling this more than once is harmless.
        """
        if self._process.returncode is None:
            self._logger.debug("Stopping helper process")
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            try:
                async with asyncio.timeout(timeout.total_seconds()):
                    await self._process.wait()
            except TimeoutError:
                self._logger.warning("Helper process did not exit")
        if self._drain and not self._drain.done():
            self._drain.cancel()

    async def _drain_output(self) -> None:
        # Unread output would eventually block the process.
        assert self._process.stdout
        while line := await self._process.stdout.readline():
            self._logger.debug(line.decode(errors="replace").rstrip())


class PortForwarder:
    """Start ``kubectl port-forward`` processes.

    Parameters
    ----------
    kubectl
        Name or path of the kubectl executable.
    context
        Kubeconfig context to pass to kubectl, if any.
    logger
        Logger to use.
    """

    def __init__(
        self, *, kubectl: str, context: str | None, logger: BoundLogger
    ) -> None:
        self._kubectl = kubectl
        self._context = context
        self._logger = logger

    def check(self) -> None:
        """Verify that kubectl is available."""
        check_executable(self._kubectl)

    async def start(
        self, pod: PodHandle, bindings: Sequence[PortBinding]
    ) -> HelperProcess:
        """Forward local ports to the pod.

        Waits for kubectl to report that forwarding is established.

        Parameters
        ----------
        pod
            Pod to forward to.
        bindings
            Port pairs to forward.

        Returns
        -------
        HelperProcess
            Running port-forward process.

        Raises
        ------
        HelperProcessError
            Raised if kubectl cannot be started or exits before forwarding
            is established.
        """
        args = [self._kubectl]
        if self._context:
            args.extend(["--context", self._context])
        args.extend(
            [
                "--namespace",
                pod.namespace,
                "port-forward",
                "--address",
                "127.0.0.1",
                f"pod/{pod.name}",
                *(str(b) for b in bindings),
            ]
        )
        logger = self._logger.bind(name=pod.name, namespace=pod.namespace)
        logger.debug("Starting port forwarding", args=args)
        process = await _spawn("port forwarding", args, capture_stdout=True)
        assert process.stdout
        try:
            line = await process.stdout.readline()
        except BaseException:
            await _reap(process)
            raise
        if not line:
            status = await process.wait()
            msg = f"Port forwarding failed to start (exit status {status})"
            raise HelperProcessError(msg)
        logger.info(
            "Port forwarding established",
            ports=[str(b) for b in bindings],
            output=line.decode(errors="replace").strip(),
        )
        return HelperProcess("port-forward", process, self._logger)


class SshfsMounter:
    """Start ``sshfs`` processes mounting the claim locally.

    Parameters
    ----------
    sshfs
        Name or path of the sshfs executable.
    logger
        Logger to use.
    """

    def __init__(self, *, sshfs: str, logger: BoundLogger) -> None:
        self._sshfs = sshfs
        self._logger = logger

    def check(self) -> None:
        """Verify that sshfs is available."""
        check_executable(self._sshfs)

    async def mount(
        self,
        *,
        port: int,
        user: str,
        remote_path: str,
        mountpoint: Path,
        identity_file: Path,
        read_only: bool,
    ) -> HelperProcess:
        """Mount a directory of the pod through a forwarded SSH port.

        Parameters
        ----------
        port
            Local port forwarded to the SSH server in the pod.
        user
            User to authenticate as.
        remote_path
            Directory in the pod to mount.
        mountpoint
            Local directory to mount on. Created if missing.
        identity_file
            Private key file for authentication.
        read_only
            Whether to mount read-only.

        Returns
        -------
        HelperProcess
            Running sshfs process, which unmounts when it exits.

        Raises
        ------
        HelperProcessError
            Raised if sshfs cannot be started.
        """
        try:
            mountpoint.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"Cannot create mountpoint {mountpoint}: {e}"
            raise HelperProcessError(msg) from e
        args = [
            self._sshfs,
            f"{user}@127.0.0.1:{remote_path}",
            str(mountpoint),
            "-f",
            "-p",
            str(port),
            "-o",
            "auto_unmount",
            "-o",
            "UserKnownHostsFile=/dev/null",
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            f"IdentityFile={identity_file}",
        ]
        if read_only:
            args.extend(["-o", "ro"])
        self._logger.debug("Starting sshfs", args=args)
        process = await _spawn("sshfs", args)
        self._logger.info(
            f"Mounting {remote_path} at {mountpoint}", read_only=read_only
        )
        return HelperProcess("sshfs", process, self._logger)
