"""Claim, build, persist and propagate one report aggregate."""

from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from jobcost.core.errors import AggregateNotFoundError, ConfigurationError
from jobcost.core.periods import PeriodGranularity, as_utc, period_bounds
from jobcost.models.reports import AggregateLevel, JobsitePeriodReport
from jobcost.repositories.record_repository import RecordRepository
from jobcost.repositories.report_repository import ReportRepository
from jobcost.services.day_report_builder import build_day_report, load_day_inputs
from jobcost.services.invalidation import InvalidationPropagator, tracker_for
from jobcost.services.master_report_builder import active_jobsite_ids, build_master_report
from jobcost.services.period_report_builder import build_period_report, load_period_inputs
from jobcost.services.rates import OrganizationConfig
from jobcost.services.staleness import StalenessTracker

logger = logging.getLogger(__name__)


class RebuildOutcome(str, enum.Enum):
    REBUILT = "rebuilt"
    FAILED = "failed"
    # Not claimable: already current, or claimed by another worker.
    SKIPPED = "skipped"
    # Claimed, but the claim was taken over before completion.
    LOST = "lost"


class ReportRebuildService:
    def __init__(self, db: Session, config: OrganizationConfig | None = None) -> None:
        self.db = db
        self.reports = ReportRepository(db)
        self.records = RecordRepository(db)
        self._config = config

    @property
    def config(self) -> OrganizationConfig:
        if self._config is None:
            self._config = OrganizationConfig.load(self.db)
        return self._config

    def rebuild(
        self,
        level: AggregateLevel,
        report_id: UUID,
        *,
        reclaim_before: datetime | None = None,
        propagate: bool = True,
    ) -> RebuildOutcome:
        tracker = tracker_for(self.db, level)
        token = tracker.claim_for_rebuild(report_id, reclaim_before=reclaim_before)
        if token is None:
            return RebuildOutcome.SKIPPED

        try:
            values = self._build(level, report_id)
            completed = tracker.complete_rebuild(report_id, token, success=True, values=values)
        except ConfigurationError as exc:
            self.db.rollback()
            logger.error("Cannot rebuild %s report %s: %s", level.value, report_id, exc)
            tracker.complete_rebuild(report_id, token, success=False, error=str(exc))
            outcome = RebuildOutcome.FAILED
        except Exception as exc:
            self.db.rollback()
            logger.exception("Rebuild of %s report %s failed", level.value, report_id)
            tracker.complete_rebuild(report_id, token, success=False, error=f"{type(exc).__name__}: {exc}")
            outcome = RebuildOutcome.FAILED
        else:
            if not completed:
                # The worker holding the claim now propagates.
                logger.warning("Claim on %s report %s was taken over before it completed", level.value, report_id)
                return RebuildOutcome.LOST
            outcome = RebuildOutcome.REBUILT

        # Parents are requested whether or not this rebuild succeeded.
        if propagate and not self._propagate_or_rerequest(tracker, level, report_id):
            return RebuildOutcome.FAILED
        return outcome

    # ---------- Build ----------
    def _build(self, level: AggregateLevel, report_id: UUID) -> dict[str, Any]:
        if level is AggregateLevel.DAY:
            day_report = self.reports.get_day_report_by_id(report_id)
            if day_report is None:
                raise AggregateNotFoundError(f"Day report {report_id} not found.")
            inputs = load_day_inputs(self.records, day_report.jobsite_id, day_report.report_date, self.config)
            return build_day_report(inputs).to_values()

        if level is AggregateLevel.MASTER:
            return self._build_master(report_id)

        period_report = self.reports.get_period_report_by_id(report_id)
        if period_report is None:
            raise AggregateNotFoundError(f"Period report {report_id} not found.")
        inputs = load_period_inputs(self.reports, self.records, period_report)
        document = build_period_report(inputs, self.config)
        # Flushed with the completion statement so both commit or roll back together.
        self.reports.delete_day_reports(document.orphan_day_report_ids)
        return document.to_values()

    def _build_master(self, report_id: UUID) -> dict[str, Any]:
        master = self.reports.get_master_report_by_id(report_id)
        if master is None:
            raise AggregateNotFoundError(f"Master report {report_id} not found.")
        start, end = period_bounds(as_utc(master.start_of_year), PeriodGranularity.YEAR, self.config.timezone)

        jobsite_ids = active_jobsite_ids(self.reports, self.records, start=start, end=end)
        year_reports: dict[UUID, JobsitePeriodReport] = {}
        for jobsite_id in sorted(jobsite_ids, key=str):
            year_report = self.reports.get_period_report(jobsite_id, PeriodGranularity.YEAR, start)
            if year_report is None:
                year_report = self._build_missing_year(jobsite_id, start, end)
            year_reports[jobsite_id] = year_report
        return build_master_report(self.records.list_jobsites(jobsite_ids), year_reports).to_values()

    def _build_missing_year(self, jobsite_id: UUID, start: datetime, end: datetime) -> JobsitePeriodReport:
        created = self.reports.get_or_create_period_report(
            jobsite_id,
            granularity=PeriodGranularity.YEAR,
            period_start=start,
            period_end=end,
        )
        year_report_id = created.id
        self.db.commit()
        logger.info("Building missing year report %s for jobsite %s", year_report_id, jobsite_id)
        self.rebuild(AggregateLevel.YEAR, year_report_id, propagate=False)
        return self.reports.get_period_report_by_id(year_report_id)

    # ---------- Propagation ----------
    def _propagate(self, level: AggregateLevel, report_id: UUID) -> None:
        propagator = InvalidationPropagator(self.db, config=self.config)
        if level is AggregateLevel.DAY:
            day_report = self.reports.get_day_report_by_id(report_id)
            if day_report is not None:
                propagator.on_day_rebuilt(day_report)
        elif level is AggregateLevel.YEAR:
            year_report = self.reports.get_period_report_by_id(report_id)
            if year_report is not None:
                propagator.on_year_rebuilt(year_report)

    def _propagate_or_rerequest(self, tracker: StalenessTracker, level: AggregateLevel, report_id: UUID) -> bool:
        """Request the parents of a finished rebuild.

        If that fails the report itself goes back to ``requested``, so a later
        scan rebuilds it and retries the parent requests.
        """

        try:
            self._propagate(level, report_id)
        except Exception:
            self.db.rollback()
            logger.exception("Requesting parents of %s report %s failed", level.value, report_id)
            tracker.mark_requested(report_id)
            return False
        return True
