"""Invalidation propagation across the day -> month/year -> master hierarchy."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from jobcost.core.periods import PeriodGranularity, as_utc, local_date, local_midnight, period_bounds
from jobcost.models.reports import (
    AggregateLevel,
    AggregateRef,
    JobsiteDayReport,
    JobsitePeriodReport,
    JobsiteYearMasterReport,
)
from jobcost.repositories.record_repository import RecordRepository
from jobcost.repositories.report_repository import ReportRepository
from jobcost.services.rates import OrganizationConfig
from jobcost.services.staleness import StalenessTracker

logger = logging.getLogger(__name__)


def tracker_for(db: Session, level: AggregateLevel) -> StalenessTracker:
    if level is AggregateLevel.DAY:
        return StalenessTracker(db, JobsiteDayReport)
    if level is AggregateLevel.MONTH:
        return StalenessTracker(db, JobsitePeriodReport, JobsitePeriodReport.granularity == PeriodGranularity.MONTH)
    if level is AggregateLevel.YEAR:
        return StalenessTracker(db, JobsitePeriodReport, JobsitePeriodReport.granularity == PeriodGranularity.YEAR)
    return StalenessTracker(db, JobsiteYearMasterReport)


class InvalidationPropagator:
    """Maps a change to the aggregate keys it affects and marks each of them ``requested``.

    Missing aggregates are created on first invalidation. Nothing here rebuilds
    anything; the workers pick the requests up on their next scan.
    """

    def __init__(self, db: Session, config: OrganizationConfig | None = None) -> None:
        self.db = db
        self.records = RecordRepository(db)
        self.reports = ReportRepository(db)
        self._config = config

    @property
    def config(self) -> OrganizationConfig:
        if self._config is None:
            self._config = OrganizationConfig.load(self.db)
        return self._config

    # ---------- Raw record notifications ----------
    def on_raw_record_changed(
        self,
        jobsite_id: UUID,
        affected_at: datetime,
        *,
        affected_at_before: datetime | None = None,
        jobsite_id_before: UUID | None = None,
    ) -> list[UUID]:
        """Request the day report(s) owning a created, edited or deleted line.

        When an edit moved the line to another day or jobsite both the old and
        the new owner are requested.
        """

        keys = [(jobsite_id, affected_at)]
        if affected_at_before is not None or jobsite_id_before is not None:
            keys.append((jobsite_id_before or jobsite_id, affected_at_before or affected_at))
        return self._request_days(keys)

    def on_invoice_changed(
        self,
        jobsite_id: UUID,
        invoice_at: datetime,
        *,
        invoice_at_before: datetime | None = None,
        jobsite_id_before: UUID | None = None,
    ) -> list[UUID]:
        """Invoices feed period reports directly; day reports are not involved."""

        keys = [(jobsite_id, invoice_at)]
        if invoice_at_before is not None or jobsite_id_before is not None:
            keys.append((jobsite_id_before or jobsite_id, invoice_at_before or invoice_at))

        requested: list[UUID] = []
        seen: set[tuple[UUID, date]] = set()
        for key_jobsite_id, instant in keys:
            day = local_date(instant, self.config.timezone)
            if (key_jobsite_id, day) in seen:
                continue
            seen.add((key_jobsite_id, day))
            requested.extend(self._request_month_and_year(key_jobsite_id, instant))
        return list(dict.fromkeys(requested))

    # ---------- Rebuild chaining ----------
    def on_day_rebuilt(self, day_report: JobsiteDayReport) -> list[UUID]:
        return self._request_month_and_year(day_report.jobsite_id, as_utc(day_report.start_of_day))

    def on_year_rebuilt(self, year_report: JobsitePeriodReport) -> UUID:
        return self._request_master(as_utc(year_report.period_start))

    # ---------- Reference data notifications ----------
    def on_employee_rates_changed(self, employee_id: UUID) -> list[UUID]:
        return self._request_days(self.records.list_employee_activity(employee_id))

    def on_vehicle_rates_changed(self, vehicle_id: UUID) -> list[UUID]:
        return self._request_days(self.records.list_vehicle_activity(vehicle_id))

    def on_jobsite_material_rates_changed(self, jobsite_material_id: UUID) -> list[UUID]:
        return self._request_days(self.records.list_jobsite_material_activity(jobsite_material_id))

    def on_jobsite_changed(self, jobsite_id: UUID) -> list[UUID]:
        """Request every day of a jobsite that has activity or an existing report."""

        requested = self._request_days(
            (jobsite_id, instant) for instant in self.records.list_jobsite_activity_times(jobsite_id)
        )
        tracker = tracker_for(self.db, AggregateLevel.DAY)
        for report_id in self.reports.list_all_day_report_ids(jobsite_id):
            if report_id not in requested:
                tracker.mark_requested(report_id)
                requested.append(report_id)
        return requested

    def on_system_rates_changed(self) -> int:
        """Overhead and surcharge feed every period total."""

        report_ids = self.reports.list_all_period_report_ids()
        tracker = StalenessTracker(self.db, JobsitePeriodReport)
        for report_id in report_ids:
            tracker.mark_requested(report_id)
        logger.info("Requested rebuild of %s period reports after a system rate change", len(report_ids))
        return len(report_ids)

    # ---------- Manual trigger ----------
    def request_rebuild(self, ref: AggregateRef) -> UUID:
        if ref.level is AggregateLevel.MASTER:
            return self._request_master(ref.period_start)
        if ref.jobsite_id is None:
            raise ValueError(f"A {ref.level.value} aggregate requires a jobsite.")
        if ref.level is AggregateLevel.DAY:
            return self._request_day(ref.jobsite_id, ref.period_start)
        return self._request_period(ref.jobsite_id, ref.level.granularity, ref.period_start)

    # ---------- Helpers ----------
    def _request_days(self, keys: Iterable[tuple[UUID, datetime]]) -> list[UUID]:
        tz = self.config.timezone
        requested: list[UUID] = []
        seen: set[tuple[UUID, date]] = set()
        for jobsite_id, instant in keys:
            day = local_date(instant, tz)
            if (jobsite_id, day) in seen:
                continue
            seen.add((jobsite_id, day))
            requested.append(self._request_day(jobsite_id, instant))
        return requested

    def _request_day(self, jobsite_id: UUID, instant: datetime) -> UUID:
        tz = self.config.timezone
        day = local_date(instant, tz)
        report = self.reports.get_or_create_day_report(
            jobsite_id,
            report_date=day,
            start_of_day=local_midnight(day, tz),
        )
        report_id = report.id
        tracker_for(self.db, AggregateLevel.DAY).mark_requested(report_id)
        return report_id

    def _request_month_and_year(self, jobsite_id: UUID, instant: datetime) -> list[UUID]:
        return [
            self._request_period(jobsite_id, PeriodGranularity.MONTH, instant),
            self._request_period(jobsite_id, PeriodGranularity.YEAR, instant),
        ]

    def _request_period(self, jobsite_id: UUID, granularity: PeriodGranularity, instant: datetime) -> UUID:
        start, end = period_bounds(instant, granularity, self.config.timezone)
        report = self.reports.get_or_create_period_report(
            jobsite_id,
            granularity=granularity,
            period_start=start,
            period_end=end,
        )
        report_id = report.id
        StalenessTracker(self.db, JobsitePeriodReport).mark_requested(report_id)
        return report_id

    def _request_master(self, instant: datetime) -> UUID:
        tz = self.config.timezone
        start, _ = period_bounds(instant, PeriodGranularity.YEAR, tz)
        report = self.reports.get_or_create_master_report(local_date(start, tz).year, start_of_year=start)
        report_id = report.id
        tracker_for(self.db, AggregateLevel.MASTER).mark_requested(report_id)
        return report_id
