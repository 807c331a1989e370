"""Timeout class for Kubernetes operations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Self

from .exceptions import OperationTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative timeout on a series of operations.

    Waiting for an inspection pod involves several Kubernetes calls that each
    accept their own timeout, all of which must complete within a total
    budget. This class encapsulates that budget. A timeout of `None` means
    the operations may take as long as they need, which is the default for
    interactive use.

    Parameters
    ----------
    operation
        Human-readable name of operation, for error reporting.
    timeout
        Duration of the timeout, or `None` to wait indefinitely.
    """

    def __init__(self, operation: str, timeout: timedelta | None) -> None:
        self._operation = operation
        self._timeout = timeout
        self._start = datetime.now(tz=UTC)

    @property
    def operation(self) -> str:
        """Human-readable name of the operation."""
        return self._operation

    def elapsed(self) -> float:
        """Elapsed time since the timeout started.

        Returns
        -------
        float
            Seconds elapsed since the object was created.
        """
        now = datetime.now(tz=UTC)
        return (now - self._start).total_seconds()

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Enforce the timeout and translate `TimeoutError`.

        Raises
        ------
        OperationTimeoutError
            Raised if `TimeoutError` was raised inside the enclosed operation.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except (OperationTimeoutError, TimeoutError) as e:
            now = datetime.now(tz=UTC)
            raise OperationTimeoutError(
                self._operation, started_at=self._start, failed_at=now
            ) from e

    def left(self) -> float | None:
        """Return the amount of time remaining in seconds.

        Returns
        -------
        float or None
            Time remaining in the timeout in seconds, or `None` if the
            timeout is unbounded.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout has expired.
        """
        if self._timeout is None:
            return None
        now = datetime.now(tz=UTC)
        left = (self._timeout - (now - self._start)).total_seconds()
        if left <= 0.0:
            raise OperationTimeoutError(
                self._operation, started_at=self._start, failed_at=now
            )
        return left

    def partial(self, timeout: timedelta) -> Self:
        """Create a timeout that is an extension of this timeout.

        After a watch for object deletion times out, we want to perform a
        final check that fits within the overall timeout. This method returns
        a shorter timeout with the same metadata for that sub-operation.

        Parameters
        ----------
        timeout
            Maximum duration of timeout. The newly-created timeout will be
            capped at the remaining duration of the parent timeout.

        Returns
        -------
        Timeout
            Child timeout.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout parameter is less than 0.
        """
        now = datetime.now(tz=UTC)
        if timeout < timedelta(seconds=0):
            raise OperationTimeoutError(
                self._operation, started_at=self._start, failed_at=now
            )
        if self._timeout is not None:
            left = self._timeout - (now - self._start)
            timeout = min(left, timeout)
        return type(self)(self._operation, timeout)
