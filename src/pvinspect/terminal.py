"""Access to the operator's terminal."""

from __future__ import annotations

import asyncio
import os
import sys
import termios
import tty
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO

__all__ = ["LocalTerminal"]

_READ_SIZE = 4096


class LocalTerminal:
    """The operator's terminal, used for interactive sessions.

    Reads are integrated with the event loop rather than done in a thread,
    so that a pending read is cancelled cleanly when the session ends.

    Parameters
    ----------
    stdin
        Input stream. Defaults to the process standard input.
    stdout
        Output stream. Defaults to the process standard output.
    """

    def __init__(
        self, stdin: BinaryIO | None = None, stdout: BinaryIO | None = None
    ) -> None:
        self._stdin = stdin or sys.stdin.buffer
        self._stdout = stdout or sys.stdout.buffer

    @property
    def is_tty(self) -> bool:
        """Whether standard input is a terminal."""
        return os.isatty(self._stdin.fileno())

    def size(self) -> tuple[int, int] | None:
        """Return the terminal size as columns and rows, if known."""
        try:
            size = os.get_terminal_size(self._stdout.fileno())
        except OSError:
            return None
        return size.columns, size.lines

    @contextmanager
    def raw_mode(self) -> Iterator[None]:
        """Put the terminal in raw mode for the duration of the context.

        The previous terminal settings are restored on exit, including when
        the context exits with an exception. Does nothing if standard input
        is not a terminal.
        """
        if not self.is_tty:
            yield
            return
        fd = self._stdin.fileno()
        saved = termios.tcgetattr(fd)
        tty.setraw(fd)
        try:
            yield
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)

    async def read(self) -> bytes:
        """Read whatever input is available, waiting for at least one byte.

        Returns
        -------
        bytes
            Input read, or an empty string at end of file.
        """
        loop = asyncio.get_running_loop()
        fd = self._stdin.fileno()
        ready: asyncio.Future[None] = loop.create_future()

        def on_readable() -> None:
            if not ready.done():
                ready.set_result(None)

        loop.add_reader(fd, on_readable)
        try:
            await ready
        finally:
            loop.remove_reader(fd)
        return os.read(fd, _READ_SIZE)

    async def write(self, data: bytes) -> None:
        """Write output to the terminal."""
        self._stdout.write(data)
        self._stdout.flush()
