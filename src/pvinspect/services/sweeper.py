"""Deletion of stale inspection pods."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from structlog.stdlib import BoundLogger

from ..constants import LABEL_KEY
from ..exceptions import KubernetesError, OperationTimeoutError
from ..models.domain.sweeper import StalePodRecord, SweepReport
from ..storage.kubernetes.pod import PodStorage
from ..timeout import Timeout

__all__ = ["StalePodSweeper"]


class StalePodSweeper:
    """Find and delete inspection pods left behind by sessions.

    A pod is stale if it is older than the age threshold, or if a session
    marked it for deferred deletion because it could not delete the pod
    itself.

    Parameters
    ----------
    pod_storage
        Storage layer for pods.
    delete_timeout
        How long to wait for each deletion, or `None` to wait indefinitely.
    logger
        Logger to use.
    """

    def __init__(
        self,
        pod_storage: PodStorage,
        *,
        delete_timeout: timedelta | None = None,
        logger: BoundLogger,
    ) -> None:
        self._storage = pod_storage
        self._delete_timeout = delete_timeout
        self._logger = logger

    async def find(
        self,
        age: timedelta,
        *,
        namespace: str | None = None,
        now: datetime | None = None,
    ) -> list[StalePodRecord]:
        """Find the pods that should be deleted.

        Parameters
        ----------
        age
            Pods older than this are stale.
        namespace
            Namespace to search, or `None` to search all namespaces.
        now
            Current time, for testing.

        Returns
        -------
        list of StalePodRecord
            Eligible pods, oldest first.

        Raises
        ------
        KubernetesError
            Raised if the pods cannot be listed.
        """
        now = now or datetime.now(tz=UTC)
        timeout = Timeout("Listing pods", self._delete_timeout)
        if namespace:
            pods = await self._storage.list(
                namespace, timeout, label_selector=LABEL_KEY
            )
        else:
            pods = await self._storage.list_all_namespaces(
                timeout, label_selector=LABEL_KEY
            )
        records = [StalePodRecord.from_pod(p) for p in pods]
        eligible = [r for r in records if r.is_eligible(now, age)]
        return sorted(eligible, key=lambda r: r.created)

    async def sweep(
        self,
        age: timedelta,
        *,
        namespace: str | None = None,
        wait: bool = True,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> SweepReport:
        """Delete stale pods one at a time.

        Parameters
        ----------
        age
            Pods older than this are stale.
        namespace
            Namespace to sweep, or `None` to sweep all namespaces.
        wait
            Whether to wait for each deletion to complete before deleting
            the next pod.
        dry_run
            If `True`, only report the pods that would be deleted.
        now
            Current time, for testing.

        Returns
        -------
        SweepReport
            Pods found and the outcome for each.

        Raises
        ------
        KubernetesError
            Raised if the pods cannot be listed.
        """
        now = now or datetime.now(tz=UTC)
        report = SweepReport(
            candidates=await self.find(age, namespace=namespace, now=now)
        )
        self._logger.info(f"Found {len(report.candidates)} pods to delete")
        if dry_run:
            self._logger.warning("Dry run: not deleting pods")
        for record in report.candidates:
            logger = self._logger.bind(
                name=record.name,
                namespace=record.namespace,
                age=str(record.age(now)).split(".")[0],
                marker=record.marker,
            )
            if dry_run:
                logger.info("Would delete pod")
                continue
            timeout = Timeout("Pod deletion", self._delete_timeout)
            try:
                await self._storage.delete(
                    record.name, record.namespace, timeout, uid=record.uid
                )
                if wait:
                    await self._storage.wait_for_deletion(
                        record.name, record.namespace, timeout, uid=record.uid
                    )
            except (KubernetesError, OperationTimeoutError) as e:
                logger.error("Cannot delete pod", error=str(e))
                report.failed.append(record)
            else:
                logger.info("Deleted pod")
                report.deleted.append(record)
        return report
