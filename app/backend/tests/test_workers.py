from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from jobcost.core.config import Settings
from jobcost.core.periods import PeriodGranularity
from jobcost.models.entities import (
    Employee,
    EmployeeRate,
    EmployeeWork,
    Invoice,
    InvoiceDirection,
    Jobsite,
    SystemSettings,
)
from jobcost.models.reports import (
    PERIOD_TOTAL_FIELDS,
    AggregateLevel,
    AggregateRef,
    JobsiteDayReport,
    JobsitePeriodReport,
    JobsiteYearMasterReport,
    UpdateStatus,
)
from jobcost.services import report_rebuild_service
from jobcost.services.invalidation import InvalidationPropagator
from jobcost.services.report_query_service import ReportQueryService
from jobcost.workers import RebuildWorker, WorkerScheduler, default_worker_levels


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _workers(session_factory: sessionmaker, settings: Settings) -> dict[str, RebuildWorker]:
    return {level.name: RebuildWorker(level, session_factory, settings) for level in default_worker_levels(settings)}


def _create_shift(db: Session, jobsite: Jobsite, *, rate: str = "40.00") -> EmployeeWork:
    employee = Employee(name="Dana Ruiz")
    db.add(employee)
    db.flush()
    db.add(EmployeeRate(employee_id=employee.id, rate=Decimal(rate), effective_date=date(2024, 1, 1)))
    # 07:00 to 15:00 local time on 2024-06-01.
    work = EmployeeWork(
        jobsite_id=jobsite.id,
        employee_id=employee.id,
        crew_type="Base",
        start_time=_utc(2024, 6, 1, 13, 0),
        end_time=_utc(2024, 6, 1, 21, 0),
    )
    db.add(work)
    db.commit()
    return work


def _period_report(db: Session, granularity: PeriodGranularity) -> JobsitePeriodReport:
    return db.scalar(select(JobsitePeriodReport).where(JobsitePeriodReport.granularity == granularity))


def test_new_record_settles_through_every_level(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
    jobsite: Jobsite,
) -> None:
    work = _create_shift(db_session, jobsite)
    db_session.add(
        Invoice(
            jobsite_id=jobsite.id,
            direction=InvoiceDirection.EXPENSE,
            invoice_number="E-1",
            company_name="Valley Supply",
            invoice_date=_utc(2024, 6, 10, 18, 0),
            amount=Decimal("100.00"),
        )
    )
    db_session.commit()
    InvalidationPropagator(db_session).on_raw_record_changed(jobsite.id, work.start_time)
    workers = _workers(session_factory, worker_settings)

    day_scan = workers["day"].run_scan()
    period_scan = workers["period"].run_scan()
    master_scan = workers["master"].run_scan()

    assert (day_scan.claimed, day_scan.rebuilt) == (1, 1)
    assert (period_scan.claimed, period_scan.rebuilt) == (2, 2)
    assert (master_scan.claimed, master_scan.rebuilt) == (1, 1)

    db_session.expire_all()
    day_report = db_session.scalar(select(JobsiteDayReport))
    month = _period_report(db_session, PeriodGranularity.MONTH)
    year = _period_report(db_session, PeriodGranularity.YEAR)
    master = db_session.scalar(select(JobsiteYearMasterReport))

    assert day_report.update_status is UpdateStatus.CURRENT
    assert day_report.employee_cost == Decimal("320.0000")
    assert month.update_status is UpdateStatus.CURRENT
    assert month.day_report_ids == [str(day_report.id)]
    # 320 x 1.10 + 100 x 1.03
    assert month.internal_expenses_with_overhead == Decimal("352.0000")
    assert month.total_expenses == Decimal("455.0000")
    assert year.total_expenses == Decimal("455.0000")
    assert master.fiscal_year == 2024
    assert master.update_status is UpdateStatus.CURRENT
    assert master.reports == [{"jobsite_id": str(jobsite.id), "year_report_id": str(year.id)}]

    master_view = ReportQueryService(db_session).get_master_report(2024)
    assert master_view["reports"][0]["jobsite_code"] == "J-100"
    assert master_view["totals"]["total_expenses"] == "455.00"


def test_scan_without_requests_does_nothing(
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
) -> None:
    result = _workers(session_factory, worker_settings)["day"].run_scan()

    assert (result.claimed, result.rebuilt, result.failed, result.skipped) == (0, 0, 0, 0)


def test_failed_rebuild_does_not_block_other_aggregates(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
    jobsite: Jobsite,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    broken = Jobsite(code="J-999", name="Broken Import")
    db_session.add(broken)
    db_session.commit()
    propagator = InvalidationPropagator(db_session)
    propagator.on_raw_record_changed(jobsite.id, _utc(2024, 6, 1, 15, 0))
    propagator.on_raw_record_changed(broken.id, _utc(2024, 6, 1, 15, 0))
    broken_id = broken.id

    original = report_rebuild_service.build_day_report

    def flaky_build(inputs):
        if inputs.jobsite_id == broken_id:
            raise RuntimeError("corrupt line")
        return original(inputs)

    monkeypatch.setattr(report_rebuild_service, "build_day_report", flaky_build)

    result = _workers(session_factory, worker_settings)["day"].run_scan()

    assert (result.claimed, result.rebuilt, result.failed) == (2, 1, 1)
    db_session.expire_all()
    rows = {row.jobsite_id: row for row in db_session.scalars(select(JobsiteDayReport)).all()}
    assert rows[jobsite.id].update_status is UpdateStatus.CURRENT
    assert rows[broken_id].update_status is UpdateStatus.REQUESTED
    assert rows[broken_id].last_error == "RuntimeError: corrupt line"
    # Parents are requested after a failed rebuild too.
    periods = db_session.scalars(select(JobsitePeriodReport)).all()
    assert {row.jobsite_id for row in periods} == {jobsite.id, broken_id}


def test_missing_overhead_rates_leave_period_requested(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    jobsite: Jobsite,
) -> None:
    db_session.add(SystemSettings(id=1, timezone="America/Edmonton"))
    db_session.commit()
    work = _create_shift(db_session, jobsite)
    InvalidationPropagator(db_session).on_raw_record_changed(jobsite.id, work.start_time)
    workers = _workers(session_factory, worker_settings)

    workers["day"].run_scan()
    result = workers["period"].run_scan()

    assert (result.claimed, result.failed) == (2, 2)
    db_session.expire_all()
    month = _period_report(db_session, PeriodGranularity.MONTH)
    assert month.update_status is UpdateStatus.REQUESTED
    assert "overhead" in month.last_error


def test_rebuild_after_new_request_picks_up_changes(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
    jobsite: Jobsite,
) -> None:
    work = _create_shift(db_session, jobsite)
    propagator = InvalidationPropagator(db_session)
    propagator.on_raw_record_changed(jobsite.id, work.start_time)
    workers = _workers(session_factory, worker_settings)
    workers["day"].run_scan()

    # Shorten the shift to four hours and notify.
    db_session.expire_all()
    stored = db_session.get(EmployeeWork, work.id)
    stored.end_time = _utc(2024, 6, 1, 17, 0)
    db_session.commit()
    propagator.on_raw_record_changed(jobsite.id, _utc(2024, 6, 1, 13, 0))
    workers["day"].run_scan()

    db_session.expire_all()
    day_report = db_session.scalar(select(JobsiteDayReport))
    assert day_report.update_status is UpdateStatus.CURRENT
    assert day_report.employee_cost == Decimal("160.0000")


def test_scheduler_builds_one_loop_per_level(session_factory: sessionmaker, worker_settings: Settings) -> None:
    scheduler = WorkerScheduler.from_settings(session_factory, worker_settings)

    assert [worker.level.name for worker in scheduler.workers] == ["day", "period", "master"]

    async def start_and_stop() -> bool:
        scheduler.start()
        running = scheduler.running
        await scheduler.stop()
        return running

    assert asyncio.run(start_and_stop()) is True
    assert scheduler.running is False


def _store_error() -> OperationalError:
    return OperationalError("UPDATE jobsite_period_reports", {}, Exception("database is locked"))


def test_failed_parent_request_sends_day_back_for_retry(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
    jobsite: Jobsite,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    work = _create_shift(db_session, jobsite)
    InvalidationPropagator(db_session).on_raw_record_changed(jobsite.id, work.start_time)
    calls = []
    original = InvalidationPropagator.on_day_rebuilt

    def flaky_on_day_rebuilt(self, day_report):
        calls.append(day_report.id)
        if len(calls) == 1:
            raise _store_error()
        return original(self, day_report)

    monkeypatch.setattr(InvalidationPropagator, "on_day_rebuilt", flaky_on_day_rebuilt)
    workers = _workers(session_factory, worker_settings)

    first = workers["day"].run_scan()
    db_session.expire_all()
    assert (first.claimed, first.rebuilt, first.failed) == (1, 0, 1)
    assert db_session.scalar(select(JobsiteDayReport)).update_status is UpdateStatus.REQUESTED
    assert db_session.scalars(select(JobsitePeriodReport)).all() == []

    second = workers["day"].run_scan()
    period_scan = workers["period"].run_scan()

    assert (second.claimed, second.rebuilt) == (1, 1)
    assert (period_scan.claimed, period_scan.rebuilt) == (2, 2)
    db_session.expire_all()
    assert db_session.scalar(select(JobsiteDayReport)).update_status is UpdateStatus.CURRENT
    assert _period_report(db_session, PeriodGranularity.MONTH).employee_cost == Decimal("320.0000")


def test_failed_day_rebuild_still_requests_parents(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
    jobsite: Jobsite,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    work = _create_shift(db_session, jobsite)
    InvalidationPropagator(db_session).on_raw_record_changed(jobsite.id, work.start_time)

    def unavailable(*args, **kwargs):
        raise _store_error()

    monkeypatch.setattr(report_rebuild_service, "load_day_inputs", unavailable)

    result = _workers(session_factory, worker_settings)["day"].run_scan()

    assert (result.claimed, result.rebuilt, result.failed) == (1, 0, 1)
    db_session.expire_all()
    day_report = db_session.scalar(select(JobsiteDayReport))
    assert day_report.update_status is UpdateStatus.REQUESTED
    assert day_report.last_error.startswith("OperationalError")
    month = _period_report(db_session, PeriodGranularity.MONTH)
    year = _period_report(db_session, PeriodGranularity.YEAR)
    assert month.update_status is UpdateStatus.REQUESTED
    assert year.update_status is UpdateStatus.REQUESTED


def test_rebuilding_a_month_twice_gives_the_same_report(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
    jobsite: Jobsite,
) -> None:
    work = _create_shift(db_session, jobsite)
    propagator = InvalidationPropagator(db_session)
    propagator.on_raw_record_changed(jobsite.id, work.start_time)
    workers = _workers(session_factory, worker_settings)
    workers["day"].run_scan()
    workers["period"].run_scan()

    db_session.expire_all()
    month = _period_report(db_session, PeriodGranularity.MONTH)
    month_id = month.id
    first = {name: getattr(month, name) for name in (*PERIOD_TOTAL_FIELDS, "day_report_ids", "crew_types")}

    propagator.request_rebuild(AggregateRef(AggregateLevel.MONTH, jobsite.id, _utc(2024, 6, 1, 6, 0)))
    result = workers["period"].run_scan()

    assert (result.claimed, result.rebuilt) == (1, 1)
    db_session.expire_all()
    rebuilt = db_session.get(JobsitePeriodReport, month_id)
    assert rebuilt.update_status is UpdateStatus.CURRENT
    assert {name: getattr(rebuilt, name) for name in first} == first


def test_master_builds_missing_year_report_on_demand(
    db_session: Session,
    session_factory: sessionmaker,
    worker_settings: Settings,
    organization: SystemSettings,
    jobsite: Jobsite,
) -> None:
    db_session.add(
        Invoice(
            jobsite_id=jobsite.id,
            direction=InvoiceDirection.EXPENSE,
            invoice_number="E-7",
            company_name="Valley Supply",
            invoice_date=_utc(2024, 3, 10, 18, 0),
            amount=Decimal("100.00"),
        )
    )
    db_session.commit()
    InvalidationPropagator(db_session).request_rebuild(
        AggregateRef(AggregateLevel.MASTER, None, _utc(2024, 1, 1, 7, 0))
    )

    result = _workers(session_factory, worker_settings)["master"].run_scan()

    assert (result.claimed, result.rebuilt) == (1, 1)
    db_session.expire_all()
    year = _period_report(db_session, PeriodGranularity.YEAR)
    master = db_session.scalar(select(JobsiteYearMasterReport))
    assert year.update_status is UpdateStatus.CURRENT
    assert year.total_expenses == Decimal("103.0000")
    assert master.update_status is UpdateStatus.CURRENT
    assert master.reports == [{"jobsite_id": str(jobsite.id), "year_report_id": str(year.id)}]
