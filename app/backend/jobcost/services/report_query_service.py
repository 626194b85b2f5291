"""Read access to materialized reports for the presentation layer."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from jobcost.core.errors import AggregateNotFoundError
from jobcost.core.periods import PeriodGranularity, as_utc, day_bounds
from jobcost.models.reports import (
    INVOICE_SUMMARY_FIELDS,
    ON_SITE_SUMMARY_FIELDS,
    PERIOD_TOTAL_FIELDS,
    AggregateLevel,
    AggregateRef,
    JobsiteDayReport,
    JobsitePeriodReport,
    JobsiteYearMasterReport,
)
from jobcost.repositories.record_repository import RecordRepository
from jobcost.repositories.report_repository import ReportRepository
from jobcost.services.invalidation import InvalidationPropagator
from jobcost.services.rates import ZERO, OrganizationConfig, q2, q4, to_decimal

logger = logging.getLogger(__name__)

LINE_DECIMAL_FIELDS = ("rate", "hours", "quantity", "cost")
MASTER_TOTAL_FIELDS = ("internal_expenses", "total_expenses", "total_revenue", "net_income")
# Ratios keep their stored precision.
RATIO_FIELDS = frozenset({"margin"})


def _present(value: Any) -> str:
    return str(q2(to_decimal(value)))


def _present_total(name: str, value: Any) -> str:
    if name in RATIO_FIELDS:
        return str(q4(to_decimal(value)))
    return _present(value)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat()


def _present_lines(lines: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    presented = []
    for line in lines or []:
        item = dict(line)
        for name in LINE_DECIMAL_FIELDS:
            if name in item and item[name] is not None:
                item[name] = _present(item[name])
        presented.append(item)
    return presented


def _present_buckets(buckets: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return [
        {"crew_type": bucket["crew_type"], **{name: _present(bucket.get(name)) for name in ON_SITE_SUMMARY_FIELDS}}
        for bucket in buckets or []
    ]


def _present_invoices(invoices: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    return [{**invoice, "amount": _present(invoice.get("amount"))} for invoice in invoices or []]


class ReportQueryService:
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

    # ---------- Reads ----------
    def get_day_report(self, jobsite_id: UUID, day: date) -> dict[str, Any]:
        start, end = day_bounds(day, PeriodGranularity.DAY, self.config.timezone)
        rows = self.reports.list_day_reports_in_range(jobsite_id, start=start, end=end)
        if not rows:
            raise AggregateNotFoundError(f"No day report for jobsite {jobsite_id} on {day.isoformat()}.")
        kept = self._reconcile_duplicate_days(rows)
        return self.serialize_day_report(kept)

    def get_period_report(
        self,
        jobsite_id: UUID,
        period_start: date,
        granularity: PeriodGranularity,
    ) -> dict[str, Any]:
        if granularity is PeriodGranularity.DAY:
            raise ValueError("Period reports are monthly or yearly.")
        start, _ = day_bounds(period_start, granularity, self.config.timezone)
        row = self.reports.get_period_report(jobsite_id, granularity, start)
        if row is None:
            raise AggregateNotFoundError(
                f"No {granularity.value} report for jobsite {jobsite_id} starting {period_start.isoformat()}."
            )
        return self.serialize_period_report(row)

    def get_master_report(self, fiscal_year: int) -> dict[str, Any]:
        master = self.reports.get_master_report(fiscal_year)
        if master is None:
            raise AggregateNotFoundError(f"No master report for fiscal year {fiscal_year}.")

        references = master.reports or []
        year_reports = {
            str(row.id): row
            for row in self.reports.list_period_reports_by_ids(UUID(item["year_report_id"]) for item in references)
        }
        jobsites = {
            str(row.id): row for row in self.records.list_jobsites(UUID(item["jobsite_id"]) for item in references)
        }

        entries = []
        totals = {name: ZERO for name in MASTER_TOTAL_FIELDS}
        for item in references:
            year_report = year_reports.get(item["year_report_id"])
            if year_report is None:
                continue
            jobsite = jobsites.get(item["jobsite_id"])
            entries.append(
                {
                    "jobsite_id": item["jobsite_id"],
                    "jobsite_code": jobsite.code if jobsite else None,
                    "jobsite_name": jobsite.name if jobsite else None,
                    "year_report_id": item["year_report_id"],
                    "update_status": year_report.update_status.value,
                    "summary": self.serialize_period_summary(year_report),
                }
            )
            for name in MASTER_TOTAL_FIELDS:
                totals[name] += to_decimal(getattr(year_report, name))

        payload = self.serialize_state(master)
        payload.update(
            fiscal_year=master.fiscal_year,
            start_of_year=_iso(master.start_of_year),
            reports=entries,
            totals={name: _present(value) for name, value in totals.items()},
        )
        return payload

    # ---------- Manual rebuild ----------
    def aggregate_ref(self, level: AggregateLevel, jobsite_id: UUID | None, on_date: date) -> AggregateRef:
        """Key of the aggregate at ``level`` whose period contains the local ``on_date``."""

        start, _ = day_bounds(on_date, level.granularity, self.config.timezone)
        if level is AggregateLevel.MASTER:
            jobsite_id = None
        return AggregateRef(level=level, jobsite_id=jobsite_id, period_start=start)

    def request_rebuild(self, ref: AggregateRef) -> dict[str, Any]:
        propagator = InvalidationPropagator(self.db, config=self.config)
        report_id = propagator.request_rebuild(ref)
        row = self._load_aggregate(ref.level, report_id)
        payload = self.serialize_state(row)
        payload["level"] = ref.level.value
        return payload

    def _load_aggregate(
        self,
        level: AggregateLevel,
        report_id: UUID,
    ) -> JobsiteDayReport | JobsitePeriodReport | JobsiteYearMasterReport:
        if level is AggregateLevel.DAY:
            row = self.reports.get_day_report_by_id(report_id)
        elif level is AggregateLevel.MASTER:
            row = self.reports.get_master_report_by_id(report_id)
        else:
            row = self.reports.get_period_report_by_id(report_id)
        if row is None:
            raise AggregateNotFoundError(f"{level.value} report {report_id} not found.")
        return row

    def _reconcile_duplicate_days(self, rows: list[JobsiteDayReport]) -> JobsiteDayReport:
        ordered = sorted(rows, key=lambda row: (as_utc(row.created_at), str(row.id)))
        kept, duplicates = ordered[0], ordered[1:]
        if duplicates:
            duplicate_ids = [row.id for row in duplicates]
            kept_id = kept.id
            logger.warning(
                "Deleting %s duplicate day reports for jobsite %s on %s",
                len(duplicate_ids),
                kept.jobsite_id,
                kept.report_date,
            )
            self.reports.delete_day_reports(duplicate_ids)
            self.db.commit()
            kept = self.reports.get_day_report_by_id(kept_id)
        return kept

    # ---------- Serialization ----------
    @staticmethod
    def serialize_state(row: JobsiteDayReport | JobsitePeriodReport | JobsiteYearMasterReport) -> dict[str, Any]:
        return {
            "id": str(row.id),
            "update_status": row.update_status.value,
            "update_requested_at": _iso(row.update_requested_at),
            "last_built_at": _iso(row.last_built_at),
            "last_error": row.last_error,
        }

    @staticmethod
    def serialize_day_report(row: JobsiteDayReport) -> dict[str, Any]:
        payload = ReportQueryService.serialize_state(row)
        payload.update(
            jobsite_id=str(row.jobsite_id),
            date=row.report_date.isoformat(),
            start_of_day=_iso(row.start_of_day),
            summary={name: _present(getattr(row, name)) for name in ON_SITE_SUMMARY_FIELDS},
            crew_types=_present_buckets(row.crew_types),
            employees=_present_lines(row.employees),
            vehicles=_present_lines(row.vehicles),
            materials=_present_lines(row.materials),
            trucking=_present_lines(row.trucking),
            productions=_present_lines(row.productions),
            issues=list(row.issues or []),
        )
        return payload

    @staticmethod
    def serialize_period_summary(row: JobsitePeriodReport) -> dict[str, str]:
        summary = {name: _present(getattr(row, name)) for name in ON_SITE_SUMMARY_FIELDS}
        summary.update({name: _present(getattr(row, name)) for name in INVOICE_SUMMARY_FIELDS})
        summary.update({name: _present_total(name, getattr(row, name)) for name in PERIOD_TOTAL_FIELDS})
        return summary

    @staticmethod
    def serialize_period_report(row: JobsitePeriodReport) -> dict[str, Any]:
        payload = ReportQueryService.serialize_state(row)
        payload.update(
            jobsite_id=str(row.jobsite_id),
            granularity=row.granularity.value,
            period_start=_iso(row.period_start),
            period_end=_iso(row.period_end),
            summary=ReportQueryService.serialize_period_summary(row),
            day_report_ids=list(row.day_report_ids or []),
            crew_types=_present_buckets(row.crew_types),
            expense_invoices=_present_invoices(row.expense_invoices),
            revenue_invoices=_present_invoices(row.revenue_invoices),
            issues=list(row.issues or []),
        )
        return payload

