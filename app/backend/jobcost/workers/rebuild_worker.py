"""Periodic scan-and-rebuild for one level of the report hierarchy."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from jobcost.core.config import Settings, get_settings
from jobcost.core.periods import utcnow
from jobcost.models.reports import AggregateLevel
from jobcost.services.invalidation import tracker_for
from jobcost.services.report_rebuild_service import RebuildOutcome, ReportRebuildService

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


@dataclass(frozen=True, slots=True)
class WorkerLevel:
    name: str
    levels: tuple[AggregateLevel, ...]
    interval_seconds: float


def default_worker_levels(settings: Settings | None = None) -> list[WorkerLevel]:
    settings = settings or get_settings()
    return [
        WorkerLevel("day", (AggregateLevel.DAY,), settings.day_worker_interval_seconds),
        WorkerLevel("period", (AggregateLevel.MONTH, AggregateLevel.YEAR), settings.period_worker_interval_seconds),
        WorkerLevel("master", (AggregateLevel.MASTER,), settings.master_worker_interval_seconds),
    ]


@dataclass(slots=True)
class ScanResult:
    claimed: int = 0
    rebuilt: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, outcome: RebuildOutcome) -> None:
        if outcome is RebuildOutcome.SKIPPED:
            self.skipped += 1
            return
        self.claimed += 1
        if outcome is RebuildOutcome.REBUILT:
            self.rebuilt += 1
        elif outcome is RebuildOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


class RebuildWorker:
    """Claims and rebuilds every requested aggregate of its levels, one session per aggregate.

    Scans may overlap with each other or with another process running the same
    worker; the atomic claim keeps each aggregate to a single rebuild.
    """

    def __init__(
        self,
        level: WorkerLevel,
        session_factory: SessionFactory,
        settings: Settings | None = None,
    ) -> None:
        self.level = level
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    @property
    def reclaim_after(self) -> timedelta:
        seconds = self.settings.pending_reclaim_after_seconds or self.level.interval_seconds
        return timedelta(seconds=seconds)

    def run_scan(self) -> ScanResult:
        result = ScanResult()
        logger.debug("Starting %s rebuild scan", self.level.name)
        for level in self.level.levels:
            reclaim_before = utcnow() - self.reclaim_after
            report_ids = self._claimable_ids(level, reclaim_before)
            if not report_ids:
                continue
            for outcome in self._rebuild_all(level, report_ids, reclaim_before):
                result.record(outcome)
        if result.claimed or result.skipped:
            logger.info(
                "%s rebuild scan finished: claimed=%s rebuilt=%s failed=%s skipped=%s",
                self.level.name,
                result.claimed,
                result.rebuilt,
                result.failed,
                result.skipped,
            )
        return result

    def _claimable_ids(self, level: AggregateLevel, reclaim_before: datetime) -> list[UUID]:
        with self.session_factory() as db:
            return tracker_for(db, level).list_claimable(self.settings.worker_batch_size, reclaim_before=reclaim_before)

    def _rebuild_all(
        self,
        level: AggregateLevel,
        report_ids: list[UUID],
        reclaim_before: datetime,
    ) -> list[RebuildOutcome]:
        max_workers = min(self.settings.worker_max_concurrency, len(report_ids))
        if max_workers <= 1:
            return [self._rebuild_one(level, report_id, reclaim_before) for report_id in report_ids]
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"rebuild-{self.level.name}") as pool:
            return list(pool.map(lambda report_id: self._rebuild_one(level, report_id, reclaim_before), report_ids))

    def _rebuild_one(self, level: AggregateLevel, report_id: UUID, reclaim_before: datetime) -> RebuildOutcome:
        with self.session_factory() as db:
            try:
                return ReportRebuildService(db).rebuild(level, report_id, reclaim_before=reclaim_before)
            except Exception:
                # Store errors while releasing a claim; the claim is reclaimed on a later scan.
                db.rollback()
                logger.exception("Unhandled error rebuilding %s report %s", level.value, report_id)
                return RebuildOutcome.FAILED
