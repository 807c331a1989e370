"""Teardown of an inspection session."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from structlog.stdlib import BoundLogger

from ..exceptions import PodDeletionError
from .lifecycle import LifecycleController
from .proxy import SessionHandle

__all__ = ["CleanupCoordinator", "CleanupReport"]


@dataclass
class CleanupReport:
    """Outcome of cleaning up a session."""

    failed: list[str] = field(default_factory=list)
    """Names of the steps that failed."""

    pod_released: bool = False
    """Whether the pod was deleted or handed to the sweeper."""


class CleanupCoordinator:
    """Release everything a session holds, in a fixed order.

    Every step is attempted even if an earlier one failed, and failures are
    logged rather than raised. Running cleanup for a session a second time
    does nothing.

    Parameters
    ----------
    lifecycle
        Lifecycle controller used to delete the pod.
    logger
        Logger to use.
    """

    def __init__(
        self, lifecycle: LifecycleController, logger: BoundLogger
    ) -> None:
        self._lifecycle = lifecycle
        self._logger = logger

    async def run(
        self, session: SessionHandle, *, wait: bool
    ) -> CleanupReport:
        """Clean up a session.

        Parameters
        ----------
        session
            Session to release.
        wait
            Whether to wait for the pod deletion to be confirmed.

        Returns
        -------
        CleanupReport
            What happened.
        """
        report = CleanupReport()
        if session.released:
            return report
        session.released = True
        logger = self._logger.bind(
            name=session.pod.name, namespace=session.pod.namespace
        )

        if session.channel:
            await self._step("close shell", session.channel.close, report)
        if session.mount:
            await self._step("stop sshfs", session.mount.stop, report)
        if session.port_forward:
            await self._step(
                "stop port forwarding", session.port_forward.stop, report
            )

        try:
            await self._lifecycle.delete(session.pod, relabel_first=True)
        except PodDeletionError as e:
            logger.error("Cannot delete pod", error=str(e))
            report.failed.append("delete pod")
        except Exception:
            logger.exception("Unexpected error deleting pod")
            report.failed.append("delete pod")
        else:
            report.pod_released = True

        # Waiting for a pod that was neither deleted nor marked for the
        # sweeper could last forever.
        if wait and report.pod_released:
            await self._step(
                "wait for pod deletion",
                lambda: self._lifecycle.await_deleted(session.pod),
                report,
            )
        return report

    async def _step(
        self,
        description: str,
        action: Callable[[], Awaitable[None]],
        report: CleanupReport,
    ) -> None:
        try:
            await action()
        except Exception as e:
            msg = f"Cleanup failed: {description}"
            self._logger.warning(msg, error=str(e))
            report.failed.append(description)
