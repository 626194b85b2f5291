"""Persistence queries for day, period and master report aggregates."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jobcost.core.periods import PeriodGranularity, utcnow
from jobcost.models.reports import JobsiteDayReport, JobsitePeriodReport, JobsiteYearMasterReport, UpdateStatus


class ReportRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Day reports ----------
    def get_day_report_by_id(self, report_id: UUID) -> JobsiteDayReport | None:
        return self.db.scalar(select(JobsiteDayReport).where(JobsiteDayReport.id == report_id))

    def list_day_reports_in_range(
        self,
        jobsite_id: UUID,
        *,
        start: datetime,
        end: datetime,
    ) -> list[JobsiteDayReport]:
        """Day reports whose start falls in ``[start, end)``, oldest row first within a start."""

        return self.db.scalars(
            select(JobsiteDayReport)
            .where(
                JobsiteDayReport.jobsite_id == jobsite_id,
                JobsiteDayReport.start_of_day >= start,
                JobsiteDayReport.start_of_day < end,
            )
            .order_by(
                JobsiteDayReport.start_of_day.asc(),
                JobsiteDayReport.created_at.asc(),
                JobsiteDayReport.id.asc(),
            )
        ).all()

    def list_jobsite_ids_with_day_reports(self, *, start: datetime, end: datetime) -> set[UUID]:
        return set(
            self.db.scalars(
                select(JobsiteDayReport.jobsite_id)
                .where(JobsiteDayReport.start_of_day >= start, JobsiteDayReport.start_of_day < end)
                .distinct()
            ).all()
        )

    def list_all_day_report_ids(self, jobsite_id: UUID) -> list[UUID]:
        return self.db.scalars(select(JobsiteDayReport.id).where(JobsiteDayReport.jobsite_id == jobsite_id)).all()

    def get_or_create_day_report(
        self,
        jobsite_id: UUID,
        *,
        report_date: date,
        start_of_day: datetime,
    ) -> JobsiteDayReport:
        existing = self._find_day_report(jobsite_id, start_of_day)
        if existing is not None:
            return existing

        row = JobsiteDayReport(
            jobsite_id=jobsite_id,
            report_date=report_date,
            start_of_day=start_of_day,
            update_status=UpdateStatus.REQUESTED,
            update_requested_at=utcnow(),
        )
        try:
            with self.db.begin_nested():
                self.db.add(row)
                self.db.flush()
        except IntegrityError:
            # Another writer created the same key first.
            existing = self._find_day_report(jobsite_id, start_of_day)
            if existing is None:
                raise
            return existing
        return row

    def delete_day_reports(self, report_ids: Iterable[UUID]) -> int:
        ids = set(report_ids)
        if not ids:
            return 0
        result = self.db.execute(
            delete(JobsiteDayReport)
            .where(JobsiteDayReport.id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def _find_day_report(self, jobsite_id: UUID, start_of_day: datetime) -> JobsiteDayReport | None:
        return self.db.scalar(
            select(JobsiteDayReport)
            .where(JobsiteDayReport.jobsite_id == jobsite_id, JobsiteDayReport.start_of_day == start_of_day)
            .order_by(JobsiteDayReport.created_at.asc(), JobsiteDayReport.id.asc())
            .limit(1)
        )

    # ---------- Period reports ----------
    def get_period_report_by_id(self, report_id: UUID) -> JobsitePeriodReport | None:
        return self.db.scalar(select(JobsitePeriodReport).where(JobsitePeriodReport.id == report_id))

    def get_period_report(
        self,
        jobsite_id: UUID,
        granularity: PeriodGranularity,
        period_start: datetime,
    ) -> JobsitePeriodReport | None:
        return self.db.scalar(
            select(JobsitePeriodReport).where(
                JobsitePeriodReport.jobsite_id == jobsite_id,
                JobsitePeriodReport.granularity == granularity,
                JobsitePeriodReport.period_start == period_start,
            )
        )

    def list_period_reports_by_ids(self, report_ids: Iterable[UUID]) -> list[JobsitePeriodReport]:
        ids = set(report_ids)
        if not ids:
            return []
        return self.db.scalars(select(JobsitePeriodReport).where(JobsitePeriodReport.id.in_(ids))).all()

    def list_all_period_report_ids(self) -> list[UUID]:
        return self.db.scalars(select(JobsitePeriodReport.id)).all()

    def get_or_create_period_report(
        self,
        jobsite_id: UUID,
        *,
        granularity: PeriodGranularity,
        period_start: datetime,
        period_end: datetime,
    ) -> JobsitePeriodReport:
        existing = self.get_period_report(jobsite_id, granularity, period_start)
        if existing is not None:
            return existing

        row = JobsitePeriodReport(
            jobsite_id=jobsite_id,
            granularity=granularity,
            period_start=period_start,
            period_end=period_end,
            update_status=UpdateStatus.REQUESTED,
            update_requested_at=utcnow(),
        )
        try:
            with self.db.begin_nested():
                self.db.add(row)
                self.db.flush()
        except IntegrityError:
            existing = self.get_period_report(jobsite_id, granularity, period_start)
            if existing is None:
                raise
            return existing
        return row

    # ---------- Master reports ----------
    def get_master_report_by_id(self, report_id: UUID) -> JobsiteYearMasterReport | None:
        return self.db.scalar(select(JobsiteYearMasterReport).where(JobsiteYearMasterReport.id == report_id))

    def get_master_report(self, fiscal_year: int) -> JobsiteYearMasterReport | None:
        return self.db.scalar(select(JobsiteYearMasterReport).where(JobsiteYearMasterReport.fiscal_year == fiscal_year))

    def get_or_create_master_report(self, fiscal_year: int, *, start_of_year: datetime) -> JobsiteYearMasterReport:
        existing = self.get_master_report(fiscal_year)
        if existing is not None:
            return existing

        row = JobsiteYearMasterReport(
            fiscal_year=fiscal_year,
            start_of_year=start_of_year,
            update_status=UpdateStatus.REQUESTED,
            update_requested_at=utcnow(),
        )
        try:
            with self.db.begin_nested():
                self.db.add(row)
                self.db.flush()
        except IntegrityError:
            existing = self.get_master_report(fiscal_year)
            if existing is None:
                raise
            return existing
        return row
