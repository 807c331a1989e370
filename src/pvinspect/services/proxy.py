"""Relay of an interactive session between the terminal and the pod."""

from __future__ import annotations

import asyncio
import json
import signal
from collections.abc import Coroutine, Iterator
from contextlib import AsyncExitStack, contextmanager
from dataclasses import dataclass
from typing import Any, Self

from aiohttp import ClientError, ClientWebSocketResponse, WSMsgType
from structlog.stdlib import BoundLogger

from ..constants import MOUNT_PATH
from ..exceptions import InvalidTemplateError, SessionIOError
from ..models.domain.credentials import CredentialPair
from ..models.domain.inspection import (
    InspectionRequest,
    PortBinding,
    SessionEnd,
)
from ..models.domain.kubernetes import PodHandle
from ..models.domain.template import PodTemplate
from ..storage.kubernetes.pod import PodStorage
from ..terminal import LocalTerminal
from ..util import first_completed
from .helpers import HelperProcess, PortForwarder, SshfsMounter, find_free_port

__all__ = [
    "EscapeDetector",
    "ExecChannel",
    "InteractiveRelay",
    "SessionHandle",
    "SessionProxy",
]

_CLOSED_TYPES = frozenset(
    {WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED}
)

# Channels of the Kubernetes exec protocol.
STDIN_CHANNEL = 0
STDOUT_CHANNEL = 1
STDERR_CHANNEL = 2
ERROR_CHANNEL = 3
RESIZE_CHANNEL = 4


class ExecChannel:
    """Asynchronous wrapper around a command running in the pod.

    Each binary message on the exec websocket starts with the number of the
    channel it belongs to. One task may read while another writes.

    Parameters
    ----------
    websocket
        Websocket connection returned by the exec call.
    logger
        Logger to use.
    exit_stack
        Releases the connection and its API client when the channel is
        closed.
    """

    def __init__(
        self,
        websocket: ClientWebSocketResponse,
        logger: BoundLogger,
        *,
        exit_stack: AsyncExitStack | None = None,
    ) -> None:
        self._websocket = websocket
        self._logger = logger
        self._stack = exit_stack or AsyncExitStack()

    @classmethod
    async def open(
        cls,
        pod_storage: PodStorage,
        pod: PodHandle,
        command: list[str],
        *,
        tty: bool,
        logger: BoundLogger,
    ) -> Self:
        """Start a command in the pod.

        Raises
        ------
        KubernetesError
            Raised if the command cannot be started.
        """
        stack = AsyncExitStack()
        websocket = await stack.enter_async_context(
            pod_storage.exec(pod.name, pod.namespace, command, tty=tty)
        )
        return cls(websocket, logger, exit_stack=stack)

    async def read(self) -> bytes:
        """Read output from the command.

        Returns
        -------
        bytes
            Output from standard output or standard error, or an empty
            string once the connection has closed.

        Raises
        ------
        SessionIOError
            Raised if the connection fails.
        """
        while True:
            try:
                message = await self._websocket.receive()
            except (ClientError, OSError) as e:
                raise SessionIOError(f"Error reading from pod: {e}") from e
            if message.type == WSMsgType.BINARY:
                channel, data = message.data[0], message.data[1:]
                if channel in (STDOUT_CHANNEL, STDERR_CHANNEL) and data:
                    return data
                if channel == ERROR_CHANNEL and data:
                    status = data.decode(errors="replace")
                    self._logger.debug("Command exited", status=status)
            elif message.type == WSMsgType.ERROR:
                msg = f"Error reading from pod: {message.data}"
                raise SessionIOError(msg)
            elif message.type in _CLOSED_TYPES:
                return b""

    async def write(self, data: bytes) -> None:
        """Send input to the command.

        Raises
        ------
        SessionIOError
            Raised if the connection fails.
        """
        try:
            await self._send(STDIN_CHANNEL, data)
        except (ClientError, OSError) as e:
            raise SessionIOError(f"Error writing to pod: {e}") from e

    async def resize(self, columns: int, rows: int) -> None:
        """Tell the command's terminal about a new size."""
        size = json.dumps({"Width": columns, "Height": rows})
        try:
            await self._send(RESIZE_CHANNEL, size.encode())
        except (ClientError, OSError) as e:
            self._logger.debug("Cannot resize terminal", error=str(e))

    async def close(self) -> None:
        """Close the connection, which ends the command."""
        await self._websocket.close()
        await self._stack.aclose()

    async def _send(self, channel: int, data: bytes) -> None:
        await self._websocket.send_bytes(bytes([channel]) + data)


class EscapeDetector:
    """Detect the disconnect escape sequence in terminal input.

    Follows the OpenSSH client convention: at the start of a line, the
    escape character followed by ``.`` disconnects, and the escape character
    typed twice sends it once. The escape character is held back until the
    next byte shows whether it starts a sequence.

    Parameters
    ----------
    escape
        Escape character.
    """

    def __init__(self, escape: bytes) -> None:
        if len(escape) != 1:
            raise ValueError("Escape character must be a single byte")
        self._escape = escape
        self._line_start = True
        self._pending = False

    def feed(self, data: bytes) -> tuple[bytes, bool]:
        """Process a chunk of input.

        Parameters
        ----------
        data
            Bytes read from the terminal.

        Returns
        -------
        tuple of bytes and bool
            Bytes to forward to the pod, and whether the disconnect sequence
            was seen. Input after the disconnect sequence is discarded.
        """
        output = bytearray()
        for value in data:
            byte = bytes([value])
            if self._pending:
                self._pending = False
                if byte == b".":
                    return bytes(output), True
                if byte != self._escape:
                    output += self._escape
                output += byte
            elif self._line_start and byte == self._escape:
                self._pending = True
                continue
            else:
                output += byte
            self._line_start = byte in (b"\r", b"\n")
        return bytes(output), False

    def flush(self) -> bytes:
        """Return the escape character if it is being held back.

        Called at the end of input, when no further byte can complete the
        sequence.
        """
        if not self._pending:
            return b""
        self._pending = False
        return self._escape


class InteractiveRelay:
    """Relay bytes between the terminal and a command in the pod.

    Input and output are relayed by two tasks. Whichever finishes first,
    because its stream ended, failed, or saw the escape sequence, ends the
    session and the other is cancelled. The terminal is in raw mode while
    the relay runs.

    Parameters
    ----------
    terminal
        Operator's terminal.
    channel
        Command running in the pod.
    escape_character
        Escape character, or `None` to disable escape handling.
    logger
        Logger to use.
    """

    def __init__(
        self,
        terminal: LocalTerminal,
        channel: ExecChannel,
        *,
        escape_character: str | None,
        logger: BoundLogger,
    ) -> None:
        self._terminal = terminal
        self._channel = channel
        self._logger = logger
        self._detector = None
        if escape_character:
            self._detector = EscapeDetector(escape_character.encode())
        self._background: set[asyncio.Task[None]] = set()

    async def run(self) -> SessionEnd:
        """Relay until either direction ends.

        Returns
        -------
        SessionEnd
            Why the relay ended.

        Raises
        ------
        SessionIOError
            Raised if reading or writing either side fails.
        """
        await self._send_size()
        with self._terminal.raw_mode(), self._forward_resizes():
            return await first_completed(
                self._relay_input(), self._relay_output()
            )

    async def _relay_input(self) -> SessionEnd:
        while True:
            try:
                data = await self._terminal.read()
            except OSError as e:
                raise SessionIOError(f"Error reading terminal: {e}") from e
            if not data:
                if self._detector and (pending := self._detector.flush()):
                    await self._channel.write(pending)
                return SessionEnd.INPUT_CLOSED
            disconnect = False
            if self._detector:
                data, disconnect = self._detector.feed(data)
            if data:
                await self._channel.write(data)
            if disconnect:
                return SessionEnd.DISCONNECT

    async def _relay_output(self) -> SessionEnd:
        while True:
            data = await self._channel.read()
            if not data:
                return SessionEnd.CHANNEL_CLOSED
            try:
                await self._terminal.write(data)
            except OSError as e:
                raise SessionIOError(f"Error writing terminal: {e}") from e

    async def _send_size(self) -> None:
        if size := self._terminal.size():
            await self._channel.resize(*size)

    @contextmanager
    def _forward_resizes(self) -> Iterator[None]:
        if not self._terminal.is_tty:
            yield
            return
        loop = asyncio.get_running_loop()

        def on_resize() -> None:
            task = loop.create_task(self._send_size())
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        loop.add_signal_handler(signal.SIGWINCH, on_resize)
        try:
            yield
        finally:
            loop.remove_signal_handler(signal.SIGWINCH)


@dataclass
class SessionHandle:
    """Live resources of an inspection session.

    Filled in by `SessionProxy` as the session starts, then released exactly
    once by the cleanup coordinator.
    """

    pod: PodHandle
    """The inspection pod."""

    channel: ExecChannel | None = None
    """Interactive command in the pod, if a shell was requested."""

    port_forward: HelperProcess | None = None
    """Port-forward helper, if any ports are forwarded."""

    mount: HelperProcess | None = None
    """sshfs helper, if the claim is mounted locally."""

    released: bool = False
    """Whether cleanup has already run."""


class SessionProxy:
    """Start and run the session against a ready pod.

    Parameters
    ----------
    pod_storage
        Storage layer for pods, used to start the shell.
    port_forwarder
        Starts port forwarding.
    mounter
        Starts sshfs mounts.
    terminal
        Operator's terminal.
    escape_character
        Escape character for interactive sessions, or `None`.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        pod_storage: PodStorage,
        port_forwarder: PortForwarder,
        mounter: SshfsMounter,
        terminal: LocalTerminal,
        escape_character: str | None,
        logger: BoundLogger,
    ) -> None:
        self._pods = pod_storage
        self._forwarder = port_forwarder
        self._mounter = mounter
        self._terminal = terminal
        self._escape = escape_character
        self._logger = logger

    def check(self, request: InspectionRequest, template: PodTemplate) -> None:
        """Verify before creating the pod that the session can be started.

        Raises
        ------
        HelperProcessError
            Raised if a required helper program is missing.
        InvalidTemplateError
            Raised if the template cannot support the request.
        """
        if not (request.shell or request.needs_tunnel):
            msg = "Nothing to do: no shell, mountpoint, or port requested"
            raise InvalidTemplateError(msg)
        if request.mountpoint and not template.supports_mount:
            msg = f"Template {template.name} does not support local mounts"
            raise InvalidTemplateError(msg)
        if request.needs_tunnel:
            self._forwarder.check()
        if request.mountpoint:
            self._mounter.check()

    async def open(
        self,
        session: SessionHandle,
        request: InspectionRequest,
        template: PodTemplate,
        credentials: CredentialPair | None,
    ) -> None:
        """Start helper processes and the shell for a ready pod.

        Each resource is recorded in the session handle as soon as it is
        started, so cleanup releases it even if a later step fails.

        Raises
        ------
        HelperProcessError
            Raised if a helper process fails to start.
        KubernetesError
            Raised if the shell cannot be started.
        """
        pod = session.pod
        bindings = []
        ssh_port = None
        if request.port:
            bindings.append(request.port)
        if request.mountpoint and template.ssh_port:
            ssh_port = find_free_port()
            bindings.append(PortBinding(ssh_port, template.ssh_port))
        if bindings:
            session.port_forward = await self._forwarder.start(pod, bindings)
        if request.mountpoint and ssh_port and credentials:
            session.mount = await self._mounter.mount(
                port=ssh_port,
                user=template.ssh_user or "root",
                remote_path=MOUNT_PATH,
                mountpoint=request.mountpoint,
                identity_file=credentials.key_file,
                read_only=request.access_mode.read_only,
            )
        if request.shell:
            command = [
                "/bin/sh",
                "-c",
                f"cd {MOUNT_PATH} && exec {template.shell}",
            ]
            session.channel = await ExecChannel.open(
                self._pods,
                pod,
                command,
                tty=self._terminal.is_tty,
                logger=self._logger,
            )

    async def run(self, session: SessionHandle) -> SessionEnd:
        """Run the session until it ends.

        The interactive relay, if any, races against the liveness of every
        helper process. Whichever ends first ends the session.

        Returns
        -------
        SessionEnd
            Why the session ended.

        Raises
        ------
        SessionIOError
            Raised if the interactive relay fails.
        """
        waiters: list[Coroutine[Any, Any, SessionEnd]] = []
        if session.channel:
            relay = InteractiveRelay(
                self._terminal,
                session.channel,
                escape_character=self._escape,
                logger=self._logger,
            )
            waiters.append(relay.run())
        else:
            self._logger.info("Session running, press Ctrl-C to end it")
        for helper in (session.port_forward, session.mount):
            if helper:
                waiters.append(self._watch_helper(helper))
        end = await first_completed(*waiters)
        self._logger.debug("Session ended", reason=end.value)
        return end

    async def _watch_helper(self, helper: HelperProcess) -> SessionEnd:
        status = await helper.wait()
        self._logger.warning(
            f"{helper.name} exited unexpectedly", status=status
        )
        return SessionEnd.HELPER_EXITED
