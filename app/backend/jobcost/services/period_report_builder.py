"""Month and year report construction from owned day reports and invoices."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from jobcost.core.periods import PeriodGranularity, as_utc, local_date, utcnow
from jobcost.models.entities import Invoice, InvoiceDirection, JobsiteMaterialRate
from jobcost.models.reports import INVOICE_SUMMARY_FIELDS, JobsiteDayReport, JobsitePeriodReport
from jobcost.repositories.record_repository import RecordRepository
from jobcost.repositories.report_repository import ReportRepository
from jobcost.services.day_report_builder import OnSiteSummary
from jobcost.services.rates import (
    HUNDRED,
    ZERO,
    IssueType,
    OrganizationConfig,
    ReportIssue,
    effective_rate,
    merge_issues,
    q4,
    to_decimal,
)

logger = logging.getLogger(__name__)

ONE = Decimal("1")


@dataclass(slots=True)
class InvoiceSummary:
    external_expense_invoice_value: Decimal = ZERO
    internal_expense_invoice_value: Decimal = ZERO
    accrual_expense_invoice_value: Decimal = ZERO
    external_revenue_invoice_value: Decimal = ZERO
    internal_revenue_invoice_value: Decimal = ZERO
    accrual_revenue_invoice_value: Decimal = ZERO

    def add(self, invoice: Invoice) -> str:
        """Add the invoice to its bucket and return the classification used."""

        classification = invoice_classification(invoice)
        direction = InvoiceDirection(invoice.direction).value
        name = f"{classification}_{direction}_invoice_value"
        setattr(self, name, getattr(self, name) + to_decimal(invoice.amount))
        return classification

    def to_values(self) -> dict[str, Decimal]:
        return {name: q4(getattr(self, name)) for name in INVOICE_SUMMARY_FIELDS}


def invoice_classification(invoice: Invoice) -> str:
    """Accrual takes precedence over internal; anything else is external."""

    if invoice.accrual:
        return "accrual"
    if invoice.internal:
        return "internal"
    return "external"


@dataclass(slots=True)
class PeriodInputs:
    jobsite_id: UUID
    granularity: PeriodGranularity
    period_start: datetime
    period_end: datetime
    day_reports: list[JobsiteDayReport] = field(default_factory=list)
    invoices: list[Invoice] = field(default_factory=list)
    material_rates: dict[UUID, list[JobsiteMaterialRate]] = field(default_factory=dict)
    as_of: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class PeriodReportDocument:
    summary: OnSiteSummary
    invoice_summary: InvoiceSummary
    totals: dict[str, Decimal]
    day_report_ids: list[str]
    orphan_day_report_ids: list[UUID]
    expense_invoices: list[dict[str, Any]]
    revenue_invoices: list[dict[str, Any]]
    crew_types: list[dict[str, Any]]
    issues: list[ReportIssue]

    def to_values(self) -> dict[str, Any]:
        values: dict[str, Any] = self.summary.to_values()
        values.update(self.invoice_summary.to_values())
        values.update(self.totals)
        values.update(
            day_report_ids=self.day_report_ids,
            expense_invoices=self.expense_invoices,
            revenue_invoices=self.revenue_invoices,
            crew_types=self.crew_types,
            issues=[issue.to_json() for issue in self.issues],
        )
        return values


def load_period_inputs(
    reports: ReportRepository,
    records: RecordRepository,
    period_report: JobsitePeriodReport,
) -> PeriodInputs:
    start = as_utc(period_report.period_start)
    end = as_utc(period_report.period_end)
    inputs = PeriodInputs(
        jobsite_id=period_report.jobsite_id,
        granularity=PeriodGranularity(period_report.granularity),
        period_start=start,
        period_end=end,
        day_reports=reports.list_day_reports_in_range(period_report.jobsite_id, start=start, end=end),
        invoices=records.list_invoices(period_report.jobsite_id, start=start, end=end),
    )
    material_ids = set()
    for day_report in inputs.day_reports:
        for line in day_report.materials or []:
            if line.get("jobsite_material_id"):
                material_ids.add(UUID(line["jobsite_material_id"]))
    inputs.material_rates = records.list_jobsite_material_rates(material_ids)
    return inputs


def select_owned_days(
    day_reports: list[JobsiteDayReport],
    config: OrganizationConfig,
) -> tuple[list[JobsiteDayReport], list[UUID]]:
    """Pick one day report per local day, earliest created first; the rest are orphans."""

    ordered = sorted(
        day_reports,
        key=lambda row: (as_utc(row.start_of_day), as_utc(row.created_at), str(row.id)),
    )
    owned: dict[date, JobsiteDayReport] = {}
    orphans: list[UUID] = []
    for row in ordered:
        day = local_date(row.start_of_day, config.timezone)
        kept = owned.get(day)
        if kept is None:
            owned[day] = row
        elif as_utc(row.created_at) < as_utc(kept.created_at):
            orphans.append(kept.id)
            owned[day] = row
        else:
            orphans.append(row.id)
    if orphans:
        logger.warning("Discarding %s duplicate day reports: %s", len(orphans), ", ".join(map(str, orphans)))
    return [owned[day] for day in sorted(owned)], orphans


def _invoice_line(invoice: Invoice, classification: str) -> dict[str, Any]:
    return {
        "id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "company_name": invoice.company_name,
        "invoice_date": as_utc(invoice.invoice_date).isoformat(),
        "amount": str(q4(to_decimal(invoice.amount))),
        "internal": bool(invoice.internal),
        "accrual": bool(invoice.accrual),
        "classification": classification,
    }


def compute_totals(
    summary: OnSiteSummary,
    invoices: InvoiceSummary,
    *,
    overhead_percent: Decimal,
    surcharge_percent: Decimal,
) -> dict[str, Decimal]:
    internal_expenses = summary.internal_cost
    internal_with_overhead = internal_expenses * (ONE + overhead_percent / HUNDRED)
    total_expenses = (
        internal_with_overhead
        + invoices.external_expense_invoice_value * (ONE + surcharge_percent / HUNDRED)
        + invoices.internal_expense_invoice_value
        + invoices.accrual_expense_invoice_value
    )
    total_revenue = invoices.external_revenue_invoice_value + invoices.internal_revenue_invoice_value
    net_income = total_revenue - total_expenses
    margin = ZERO if total_expenses == ZERO else net_income / total_expenses
    return {
        "overhead_percent": q4(overhead_percent),
        "external_surcharge_percent": q4(surcharge_percent),
        "internal_expenses": q4(internal_expenses),
        "internal_expenses_with_overhead": q4(internal_with_overhead),
        "total_expenses": q4(total_expenses),
        "total_revenue": q4(total_revenue),
        "net_income": q4(net_income),
        "margin": q4(margin),
    }


def build_period_report(inputs: PeriodInputs, config: OrganizationConfig) -> PeriodReportDocument:
    tz = config.timezone
    owned_days, orphans = select_owned_days(inputs.day_reports, config)

    # ---------- On-site costs ----------
    summary = OnSiteSummary()
    crew_buckets: dict[str, OnSiteSummary] = {}
    issues: list[ReportIssue] = []
    used_materials: set[str] = set()
    for day_report in owned_days:
        summary.add(OnSiteSummary.from_mapping(day_report))
        for bucket in day_report.crew_types or []:
            crew_buckets.setdefault(bucket["crew_type"], OnSiteSummary()).add(OnSiteSummary.from_mapping(bucket))
        issues.extend(ReportIssue.from_json(item) for item in day_report.issues or [])
        used_materials.update(
            line["jobsite_material_id"] for line in day_report.materials or [] if line.get("jobsite_material_id")
        )

    # ---------- Invoices ----------
    invoice_summary = InvoiceSummary()
    expense_invoices: list[dict[str, Any]] = []
    revenue_invoices: list[dict[str, Any]] = []
    for invoice in inputs.invoices:
        classification = invoice_summary.add(invoice)
        target = expense_invoices if InvoiceDirection(invoice.direction) is InvoiceDirection.EXPENSE else revenue_invoices
        target.append(_invoice_line(invoice, classification))

    # ---------- Totals ----------
    first_day = local_date(inputs.period_start, tz)
    totals = compute_totals(
        summary,
        invoice_summary,
        overhead_percent=config.overhead_percent(first_day),
        surcharge_percent=config.surcharge_percent(first_day),
    )

    # ---------- Period-level checks ----------
    if inputs.period_end <= as_utc(inputs.as_of):
        last_day = local_date(inputs.period_end - timedelta(microseconds=1), tz)
        for material_id in sorted(used_materials):
            row = effective_rate(inputs.material_rates.get(UUID(material_id), []), last_day)
            if row is not None and row.estimated:
                issues.append(ReportIssue(IssueType.ESTIMATED_RATE_AFTER_PERIOD_CLOSE, material_id))

    return PeriodReportDocument(
        summary=summary,
        invoice_summary=invoice_summary,
        totals=totals,
        day_report_ids=[str(row.id) for row in owned_days],
        orphan_day_report_ids=orphans,
        expense_invoices=expense_invoices,
        revenue_invoices=revenue_invoices,
        crew_types=[{"crew_type": name, **crew_buckets[name].to_json()} for name in sorted(crew_buckets)],
        issues=merge_issues(issues),
    )
