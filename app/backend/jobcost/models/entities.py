"""ORM entities for raw operational records and organization configuration.

These tables are owned by the record-keeping side of the application; the
report engine only reads them. Line rows keep plain id columns for the
employee, vehicle and jobsite material they reference so that deleting one
of those never blocks, or is blocked by, a report rebuild.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from jobcost.core.periods import utcnow
from jobcost.db.base import Base


class TruckingRateType(str, enum.Enum):
    HOUR = "hour"
    QUANTITY = "quantity"


class InvoiceDirection(str, enum.Enum):
    EXPENSE = "expense"
    REVENUE = "revenue"


class SystemRateKind(str, enum.Enum):
    INTERNAL_OVERHEAD = "internal_overhead"
    EXTERNAL_INVOICE_SURCHARGE = "external_invoice_surcharge"


class Jobsite(Base):
    __tablename__ = "jobsites"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)


class EmployeeRate(Base):
    __tablename__ = "employee_rates"
    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_employee_rates_rate_non_negative"),
        Index("ix_employee_rates_employee_effective", "employee_id", "effective_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id"), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    vehicle_type: Mapped[str] = mapped_column(String(128), nullable=False)


class VehicleRate(Base):
    __tablename__ = "vehicle_rates"
    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_vehicle_rates_rate_non_negative"),
        Index("ix_vehicle_rates_vehicle_effective", "vehicle_id", "effective_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    vehicle_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("vehicles.id"), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)


class VehicleTypeDefaultRate(Base):
    """Company-wide fallback rate for vehicles that carry no rates of their own."""

    __tablename__ = "vehicle_type_default_rates"
    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_vehicle_type_default_rates_rate_non_negative"),
        Index("ix_vehicle_type_default_rates_type_effective", "vehicle_type", "effective_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    vehicle_type: Mapped[str] = mapped_column(String(128), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)


class JobsiteMaterial(Base):
    __tablename__ = "jobsite_materials"
    __table_args__ = (Index("ix_jobsite_materials_jobsite_id", "jobsite_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    material_name: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)


class JobsiteMaterialRate(Base):
    __tablename__ = "jobsite_material_rates"
    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_jobsite_material_rates_rate_non_negative"),
        Index("ix_jobsite_material_rates_material_effective", "jobsite_material_id", "effective_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_material_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("jobsite_materials.id"), nullable=False
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)


class JobsiteTruckingRate(Base):
    __tablename__ = "jobsite_trucking_rates"
    __table_args__ = (
        CheckConstraint("rate >= 0", name="ck_jobsite_trucking_rates_rate_non_negative"),
        Index("ix_jobsite_trucking_rates_jobsite_type", "jobsite_id", "truck_type", "effective_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    truck_type: Mapped[str] = mapped_column(String(128), nullable=False)
    rate_type: Mapped[TruckingRateType] = mapped_column(
        SQLEnum(
            TruckingRateType,
            name="trucking_rate_type",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=TruckingRateType.HOUR,
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)


class EmployeeWork(Base):
    __tablename__ = "employee_work"
    __table_args__ = (
        CheckConstraint("end_time >= start_time", name="ck_employee_work_end_after_start"),
        Index("ix_employee_work_jobsite_start", "jobsite_id", "start_time"),
        Index("ix_employee_work_employee_id", "employee_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    crew_type: Mapped[str] = mapped_column(String(64), nullable=False)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class VehicleWork(Base):
    __tablename__ = "vehicle_work"
    __table_args__ = (
        CheckConstraint("hours >= 0", name="ck_vehicle_work_hours_non_negative"),
        Index("ix_vehicle_work_jobsite_date", "jobsite_id", "work_date"),
        Index("ix_vehicle_work_vehicle_id", "vehicle_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    vehicle_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    crew_type: Mapped[str] = mapped_column(String(64), nullable=False)
    work_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)


class MaterialShipment(Base):
    __tablename__ = "material_shipments"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_material_shipments_quantity_non_negative"),
        Index("ix_material_shipments_jobsite_date", "jobsite_id", "shipment_date"),
        Index("ix_material_shipments_jobsite_material_id", "jobsite_material_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    # Null for non-costed shipments that are only tracked by quantity.
    jobsite_material_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    crew_type: Mapped[str] = mapped_column(String(64), nullable=False)
    shipment_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    truck_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    trucking_hours: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)


class Production(Base):
    __tablename__ = "productions"
    __table_args__ = (Index("ix_productions_jobsite_date", "jobsite_id", "work_date"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    crew_type: Mapped[str] = mapped_column(String(64), nullable=False)
    work_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    job_title: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0.00"))


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_invoices_amount_non_negative"),
        Index("ix_invoices_jobsite_date", "jobsite_id", "invoice_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    jobsite_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("jobsites.id"), nullable=False)
    direction: Mapped[InvoiceDirection] = mapped_column(
        SQLEnum(
            InvoiceDirection,
            name="invoice_direction",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    invoice_number: Mapped[str] = mapped_column(String(128), nullable=False)
    company_name: Mapped[str] = mapped_column(String(255), nullable=False)
    invoice_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    accrual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class SystemSettings(Base):
    __tablename__ = "system_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="America/Edmonton")


class SystemRate(Base):
    __tablename__ = "system_rates"
    __table_args__ = (
        CheckConstraint("percent >= 0", name="ck_system_rates_percent_non_negative"),
        UniqueConstraint("kind", "effective_date", name="uq_system_rates_kind_effective"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind: Mapped[SystemRateKind] = mapped_column(
        SQLEnum(
            SystemRateKind,
            name="system_rate_kind",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
