"""Company-wide master report listing every active jobsite's year report."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from jobcost.models.entities import Jobsite
from jobcost.models.reports import JobsitePeriodReport
from jobcost.repositories.record_repository import RecordRepository
from jobcost.repositories.report_repository import ReportRepository


@dataclass(slots=True)
class MasterReportDocument:
    reports: list[dict[str, str]]

    def to_values(self) -> dict[str, list[dict[str, str]]]:
        return {"reports": self.reports}


def active_jobsite_ids(
    reports: ReportRepository,
    records: RecordRepository,
    *,
    start: datetime,
    end: datetime,
) -> set[UUID]:
    """Active jobsites with a day report or an invoice inside ``[start, end)``."""

    candidates = reports.list_jobsite_ids_with_day_reports(start=start, end=end)
    candidates |= records.list_jobsite_ids_with_invoices(start=start, end=end)
    return {jobsite.id for jobsite in records.list_jobsites(candidates) if jobsite.active}


def build_master_report(
    jobsites: list[Jobsite],
    year_reports: dict[UUID, JobsitePeriodReport],
) -> MasterReportDocument:
    """Reference each jobsite's year report, ordered by jobsite code.

    Only ids are stored; summary figures are read through the reference so
    the master never drifts from the year reports it lists.
    """

    entries = []
    for jobsite in sorted(jobsites, key=lambda item: (item.code, str(item.id))):
        year_report = year_reports.get(jobsite.id)
        if year_report is None:
            continue
        entries.append({"jobsite_id": str(jobsite.id), "year_report_id": str(year_report.id)})
    return MasterReportDocument(reports=entries)
