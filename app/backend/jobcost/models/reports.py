"""ORM entities for materialized report aggregates."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from jobcost.core.periods import PeriodGranularity, utcnow
from jobcost.db.base import Base

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class UpdateStatus(str, enum.Enum):
    CURRENT = "current"
    REQUESTED = "requested"
    PENDING = "pending"


class AggregateLevel(str, enum.Enum):
    DAY = "day"
    MONTH = "month"
    YEAR = "year"
    MASTER = "master"

    @property
    def granularity(self) -> PeriodGranularity:
        if self is AggregateLevel.DAY:
            return PeriodGranularity.DAY
        if self is AggregateLevel.MONTH:
            return PeriodGranularity.MONTH
        return PeriodGranularity.YEAR


@dataclass(frozen=True, slots=True)
class AggregateRef:
    """Key of one aggregate: level, jobsite scope (None for master) and normalized period start."""

    level: AggregateLevel
    jobsite_id: uuid.UUID | None
    period_start: datetime


def _update_status_column() -> Mapped[UpdateStatus]:
    return mapped_column(
        SQLEnum(
            UpdateStatus,
            name="update_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=UpdateStatus.REQUESTED,
    )


class RebuildStateMixin:
    """Staleness columns shared by every aggregate table."""

    update_status: Mapped[UpdateStatus] = _update_status_column()
    update_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    update_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    update_claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    # A request that arrived while the aggregate was being rebuilt.
    update_rerequested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_built_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


def _amount() -> Mapped[Decimal]:
    return mapped_column(Numeric(18, 4), nullable=False, default=Decimal("0"))


ON_SITE_SUMMARY_FIELDS = (
    "employee_hours",
    "employee_cost",
    "vehicle_hours",
    "vehicle_cost",
    "material_quantity",
    "material_cost",
    "non_costed_material_quantity",
    "trucking_quantity",
    "trucking_hours",
    "trucking_cost",
)

INVOICE_SUMMARY_FIELDS = (
    "external_expense_invoice_value",
    "internal_expense_invoice_value",
    "accrual_expense_invoice_value",
    "external_revenue_invoice_value",
    "internal_revenue_invoice_value",
    "accrual_revenue_invoice_value",
)

PERIOD_TOTAL_FIELDS = (
    "overhead_percent",
    "external_surcharge_percent",
    "internal_expenses",
    "internal_expenses_with_overhead",
    "total_expenses",
    "total_revenue",
    "net_income",
    "margin",
)


class JobsiteDayReport(RebuildStateMixin, Base):
    __tablename__ = "jobsite_day_reports"
    __table_args__ = (
        UniqueConstraint("jobsite_id", "start_of_day", name="uq_jobsite_day_reports_jobsite_day"),
        Index("ix_jobsite_day_reports_jobsite_start", "jobsite_id", "start_of_day"),
        Index("ix_jobsite_day_reports_update_status", "update_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    report_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_of_day: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    employee_hours: Mapped[Decimal] = _amount()
    employee_cost: Mapped[Decimal] = _amount()
    vehicle_hours: Mapped[Decimal] = _amount()
    vehicle_cost: Mapped[Decimal] = _amount()
    material_quantity: Mapped[Decimal] = _amount()
    material_cost: Mapped[Decimal] = _amount()
    non_costed_material_quantity: Mapped[Decimal] = _amount()
    trucking_quantity: Mapped[Decimal] = _amount()
    trucking_hours: Mapped[Decimal] = _amount()
    trucking_cost: Mapped[Decimal] = _amount()

    crew_types: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    employees: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    vehicles: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    materials: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    trucking: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    productions: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    issues: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)


class JobsitePeriodReport(RebuildStateMixin, Base):
    """Month or year rollup for one jobsite."""

    __tablename__ = "jobsite_period_reports"
    __table_args__ = (
        UniqueConstraint(
            "jobsite_id",
            "granularity",
            "period_start",
            name="uq_jobsite_period_reports_jobsite_granularity_start",
        ),
        Index("ix_jobsite_period_reports_granularity_status", "granularity", "update_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    granularity: Mapped[PeriodGranularity] = mapped_column(
        SQLEnum(
            PeriodGranularity,
            name="period_granularity",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    employee_hours: Mapped[Decimal] = _amount()
    employee_cost: Mapped[Decimal] = _amount()
    vehicle_hours: Mapped[Decimal] = _amount()
    vehicle_cost: Mapped[Decimal] = _amount()
    material_quantity: Mapped[Decimal] = _amount()
    material_cost: Mapped[Decimal] = _amount()
    non_costed_material_quantity: Mapped[Decimal] = _amount()
    trucking_quantity: Mapped[Decimal] = _amount()
    trucking_hours: Mapped[Decimal] = _amount()
    trucking_cost: Mapped[Decimal] = _amount()

    external_expense_invoice_value: Mapped[Decimal] = _amount()
    internal_expense_invoice_value: Mapped[Decimal] = _amount()
    accrual_expense_invoice_value: Mapped[Decimal] = _amount()
    external_revenue_invoice_value: Mapped[Decimal] = _amount()
    internal_revenue_invoice_value: Mapped[Decimal] = _amount()
    accrual_revenue_invoice_value: Mapped[Decimal] = _amount()

    overhead_percent: Mapped[Decimal] = _amount()
    external_surcharge_percent: Mapped[Decimal] = _amount()
    internal_expenses: Mapped[Decimal] = _amount()
    internal_expenses_with_overhead: Mapped[Decimal] = _amount()
    total_expenses: Mapped[Decimal] = _amount()
    total_revenue: Mapped[Decimal] = _amount()
    net_income: Mapped[Decimal] = _amount()
    margin: Mapped[Decimal] = _amount()

    day_report_ids: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    expense_invoices: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    revenue_invoices: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    crew_types: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    issues: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)


class JobsiteYearMasterReport(RebuildStateMixin, Base):
    """Company-wide listing of every active jobsite's year report for one fiscal year."""

    __tablename__ = "jobsite_year_master_reports"
    __table_args__ = (Index("ix_jobsite_year_master_reports_update_status", "update_status"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    start_of_year: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # [{"jobsite_id": ..., "year_report_id": ...}], resolved at read time.
    reports: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
