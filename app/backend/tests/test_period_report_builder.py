from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from jobcost.core.errors import ConfigurationError
from jobcost.core.periods import PeriodGranularity, load_timezone
from jobcost.models.entities import Invoice, InvoiceDirection, Jobsite, JobsiteMaterialRate
from jobcost.models.reports import JobsiteDayReport, JobsitePeriodReport
from jobcost.repositories.record_repository import RecordRepository
from jobcost.repositories.report_repository import ReportRepository
from jobcost.services.period_report_builder import (
    PeriodInputs,
    build_period_report,
    invoice_classification,
    load_period_inputs,
)
from jobcost.services.rates import IssueType, OrganizationConfig, PercentRate, ReportIssue

JOBSITE_ID = uuid.uuid4()
JUNE_START = datetime(2024, 6, 1, 6, 0, tzinfo=timezone.utc)
JULY_START = datetime(2024, 7, 1, 6, 0, tzinfo=timezone.utc)

CONFIG = OrganizationConfig(
    timezone=load_timezone("America/Edmonton"),
    overhead_rates=(PercentRate(rate=Decimal("10"), effective_date=date(2020, 1, 1)),),
    surcharge_rates=(PercentRate(rate=Decimal("3"), effective_date=date(2020, 1, 1)),),
    default_surcharge_percent=Decimal("3"),
)


def _day_report(day: int, *, created_minute: int = 0, **costs: Decimal) -> JobsiteDayReport:
    return JobsiteDayReport(
        id=uuid.uuid4(),
        jobsite_id=JOBSITE_ID,
        report_date=date(2024, 6, day),
        start_of_day=datetime(2024, 6, day, 6, 0, tzinfo=timezone.utc),
        created_at=datetime(2024, 6, day, 12, created_minute, tzinfo=timezone.utc),
        **costs,
    )


def _invoice(
    amount: str,
    *,
    direction: InvoiceDirection = InvoiceDirection.EXPENSE,
    internal: bool = False,
    accrual: bool = False,
) -> Invoice:
    return Invoice(
        id=uuid.uuid4(),
        jobsite_id=JOBSITE_ID,
        direction=direction,
        invoice_number=f"INV-{amount}",
        company_name="Valley Supply",
        invoice_date=datetime(2024, 6, 15, 18, 0, tzinfo=timezone.utc),
        amount=Decimal(amount),
        internal=internal,
        accrual=accrual,
    )


def _inputs(**overrides) -> PeriodInputs:
    payload = {
        "jobsite_id": JOBSITE_ID,
        "granularity": PeriodGranularity.MONTH,
        "period_start": JUNE_START,
        "period_end": JULY_START,
        "as_of": datetime(2024, 6, 20, tzinfo=timezone.utc),
    }
    payload.update(overrides)
    return PeriodInputs(**payload)


def test_overhead_is_applied_to_on_site_costs() -> None:
    inputs = _inputs(
        day_reports=[
            _day_report(3, employee_cost=Decimal("500")),
            _day_report(4, vehicle_cost=Decimal("200")),
        ]
    )

    document = build_period_report(inputs, CONFIG)

    assert document.totals["internal_expenses"] == Decimal("700.0000")
    assert document.totals["internal_expenses_with_overhead"] == Decimal("770.0000")
    assert document.totals["total_expenses"] == Decimal("770.0000")
    assert len(document.day_report_ids) == 2


def test_external_expense_invoices_carry_surcharge() -> None:
    inputs = _inputs(
        day_reports=[_day_report(3, employee_cost=Decimal("500"), vehicle_cost=Decimal("200"))],
        invoices=[
            _invoice("1000"),
            _invoice("2000", direction=InvoiceDirection.REVENUE),
        ],
    )

    document = build_period_report(inputs, CONFIG)
    values = document.to_values()

    assert values["external_expense_invoice_value"] == Decimal("1000.0000")
    assert values["total_expenses"] == Decimal("1800.0000")
    assert values["total_revenue"] == Decimal("2000.0000")
    assert values["net_income"] == Decimal("200.0000")
    assert values["margin"] == Decimal("0.1111")
    assert [line["classification"] for line in document.expense_invoices] == ["external"]
    assert len(document.revenue_invoices) == 1


def test_internal_and_accrual_invoices_are_not_surcharged() -> None:
    inputs = _inputs(
        invoices=[
            _invoice("100", internal=True),
            _invoice("50", accrual=True),
            _invoice("75", internal=True, accrual=True),
            _invoice("400", direction=InvoiceDirection.REVENUE, accrual=True),
        ]
    )

    values = build_period_report(inputs, CONFIG).to_values()

    assert values["internal_expense_invoice_value"] == Decimal("100.0000")
    assert values["accrual_expense_invoice_value"] == Decimal("125.0000")
    assert values["total_expenses"] == Decimal("225.0000")
    assert values["accrual_revenue_invoice_value"] == Decimal("400.0000")
    assert values["total_revenue"] == Decimal("0.0000")


def test_accrual_classification_wins_over_internal() -> None:
    assert invoice_classification(_invoice("1", internal=True, accrual=True)) == "accrual"
    assert invoice_classification(_invoice("1", internal=True)) == "internal"
    assert invoice_classification(_invoice("1")) == "external"


def test_margin_is_zero_without_expenses() -> None:
    inputs = _inputs(invoices=[_invoice("500", direction=InvoiceDirection.REVENUE)])

    totals = build_period_report(inputs, CONFIG).totals

    assert totals["total_expenses"] == Decimal("0.0000")
    assert totals["net_income"] == Decimal("500.0000")
    assert totals["margin"] == Decimal("0.0000")


def test_duplicate_day_reports_keep_earliest_created() -> None:
    kept = _day_report(3, created_minute=0, employee_cost=Decimal("500"))
    duplicate = _day_report(3, created_minute=5, employee_cost=Decimal("900"))
    inputs = _inputs(day_reports=[duplicate, kept])

    document = build_period_report(inputs, CONFIG)

    assert document.day_report_ids == [str(kept.id)]
    assert document.orphan_day_report_ids == [duplicate.id]
    assert document.summary.employee_cost == Decimal("500")


def test_crew_buckets_and_issues_roll_up_from_days() -> None:
    first = _day_report(3, employee_cost=Decimal("100"))
    first.crew_types = [{"crew_type": "Paving", "employee_cost": "100.0000"}]
    first.issues = [{"type": "VEHICLE_RATE_ZERO", "entity_id": "v-1", "count": 1}]
    second = _day_report(4, employee_cost=Decimal("50"))
    second.crew_types = [
        {"crew_type": "Paving", "employee_cost": "30.0000"},
        {"crew_type": "Base", "employee_cost": "20.0000"},
    ]
    second.issues = [{"type": "VEHICLE_RATE_ZERO", "entity_id": "v-1", "count": 2}]

    document = build_period_report(_inputs(day_reports=[first, second]), CONFIG)

    assert [(bucket["crew_type"], bucket["employee_cost"]) for bucket in document.crew_types] == [
        ("Base", "20.0000"),
        ("Paving", "130.0000"),
    ]
    assert document.issues == [ReportIssue(IssueType.VEHICLE_RATE_ZERO, "v-1", 3)]


def test_estimated_rate_still_in_use_after_period_close_is_flagged() -> None:
    material_id = uuid.uuid4()
    day_report = _day_report(3, material_cost=Decimal("40"))
    day_report.materials = [{"jobsite_material_id": str(material_id), "cost": "40.0000"}]
    rates = {
        material_id: [
            JobsiteMaterialRate(
                jobsite_material_id=material_id,
                rate=Decimal("4"),
                estimated=True,
                effective_date=date(2024, 1, 1),
            )
        ]
    }

    still_open = build_period_report(_inputs(day_reports=[day_report], material_rates=rates), CONFIG)
    closed = build_period_report(
        _inputs(day_reports=[day_report], material_rates=rates, as_of=JULY_START + timedelta(days=1)),
        CONFIG,
    )

    assert still_open.issues == []
    assert closed.issues == [ReportIssue(IssueType.ESTIMATED_RATE_AFTER_PERIOD_CLOSE, str(material_id))]


def test_overhead_follows_rate_effective_at_period_start() -> None:
    config = OrganizationConfig(
        timezone=CONFIG.timezone,
        overhead_rates=(
            PercentRate(rate=Decimal("10"), effective_date=date(2020, 1, 1)),
            PercentRate(rate=Decimal("20"), effective_date=date(2024, 6, 1)),
        ),
        surcharge_rates=(),
        default_surcharge_percent=Decimal("5"),
    )
    inputs = _inputs(day_reports=[_day_report(3, employee_cost=Decimal("100"))], invoices=[_invoice("100")])

    totals = build_period_report(inputs, config).totals

    assert totals["overhead_percent"] == Decimal("20.0000")
    assert totals["external_surcharge_percent"] == Decimal("5.0000")
    assert totals["total_expenses"] == Decimal("225.0000")


def test_missing_overhead_configuration_fails_the_build() -> None:
    config = OrganizationConfig(
        timezone=CONFIG.timezone,
        overhead_rates=(),
        surcharge_rates=(),
        default_surcharge_percent=Decimal("3"),
    )

    with pytest.raises(ConfigurationError):
        build_period_report(_inputs(), config)


def test_same_inputs_build_the_same_report() -> None:
    inputs = _inputs(
        day_reports=[_day_report(3, employee_cost=Decimal("500")), _day_report(4, vehicle_cost=Decimal("200"))],
        invoices=[_invoice("1000"), _invoice("2000", direction=InvoiceDirection.REVENUE)],
    )

    first = build_period_report(inputs, CONFIG)
    second = build_period_report(inputs, CONFIG)

    assert second.to_values() == first.to_values()


def test_late_evening_activity_counts_in_its_local_month(db_session: Session, jobsite: Jobsite) -> None:
    may_start = datetime(2024, 5, 1, 6, 0, tzinfo=timezone.utc)
    db_session.add(
        JobsiteDayReport(
            jobsite_id=jobsite.id,
            report_date=date(2024, 5, 31),
            start_of_day=datetime(2024, 5, 31, 6, 0, tzinfo=timezone.utc),
            employee_cost=Decimal("100"),
        )
    )
    # 23:30 local on May 31 is already June 1 in UTC.
    db_session.add(
        Invoice(
            jobsite_id=jobsite.id,
            direction=InvoiceDirection.EXPENSE,
            invoice_number="E-31",
            company_name="Valley Supply",
            invoice_date=datetime(2024, 6, 1, 5, 30, tzinfo=timezone.utc),
            amount=Decimal("200.00"),
        )
    )
    db_session.commit()
    reports = ReportRepository(db_session)
    records = RecordRepository(db_session)

    def month_values(start: datetime, end: datetime) -> dict:
        period_report = JobsitePeriodReport(
            jobsite_id=jobsite.id,
            granularity=PeriodGranularity.MONTH,
            period_start=start,
            period_end=end,
        )
        return build_period_report(load_period_inputs(reports, records, period_report), CONFIG).to_values()

    may = month_values(may_start, JUNE_START)
    june = month_values(JUNE_START, JULY_START)

    assert may["employee_cost"] == Decimal("100.0000")
    assert may["external_expense_invoice_value"] == Decimal("200.0000")
    assert len(may["day_report_ids"]) == 1
    assert june["employee_cost"] == Decimal("0.0000")
    assert june["external_expense_invoice_value"] == Decimal("0.0000")
    assert june["day_report_ids"] == []
