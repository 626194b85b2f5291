"""report engine schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


trucking_rate_type = postgresql.ENUM("hour", "quantity", name="trucking_rate_type", create_type=False)
invoice_direction = postgresql.ENUM("expense", "revenue", name="invoice_direction", create_type=False)
system_rate_kind = postgresql.ENUM(
    "internal_overhead", "external_invoice_surcharge", name="system_rate_kind", create_type=False
)
update_status = postgresql.ENUM("current", "requested", "pending", name="update_status", create_type=False)
period_granularity = postgresql.ENUM("day", "month", "year", name="period_granularity", create_type=False)


def _rebuild_state_columns() -> list[sa.Column]:
    return [
        sa.Column("update_status", update_status, nullable=False, server_default="requested"),
        sa.Column("update_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("update_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("update_claim_token", sa.String(length=36), nullable=True),
        sa.Column("update_rerequested", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_built_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(length=2000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _amount_columns(*names: str) -> list[sa.Column]:
    return [
        sa.Column(name, sa.Numeric(18, 4), nullable=False, server_default=sa.text("0")) for name in names
    ]


def _document_columns(*names: str) -> list[sa.Column]:
    return [
        sa.Column(name, postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")) for name in names
    ]


ON_SITE_COLUMNS = (
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


def upgrade() -> None:
    for enum_type in (trucking_rate_type, invoice_direction, system_rate_kind, update_status, period_granularity):
        enum_type.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "jobsites",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "employees",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("job_title", sa.String(length=255), nullable=True),
    )

    op.create_table(
        "employee_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("employee_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.CheckConstraint("rate >= 0", name="ck_employee_rates_rate_non_negative"),
    )
    op.create_index("ix_employee_rates_employee_effective", "employee_rates", ["employee_id", "effective_date"])

    op.create_table(
        "vehicles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("vehicle_type", sa.String(length=128), nullable=False),
    )

    op.create_table(
        "vehicle_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("vehicle_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.CheckConstraint("rate >= 0", name="ck_vehicle_rates_rate_non_negative"),
    )
    op.create_index("ix_vehicle_rates_vehicle_effective", "vehicle_rates", ["vehicle_id", "effective_date"])

    op.create_table(
        "vehicle_type_default_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("vehicle_type", sa.String(length=128), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.CheckConstraint("rate >= 0", name="ck_vehicle_type_default_rates_rate_non_negative"),
    )
    op.create_index(
        "ix_vehicle_type_default_rates_type_effective",
        "vehicle_type_default_rates",
        ["vehicle_type", "effective_date"],
    )

    op.create_table(
        "jobsite_materials",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("material_name", sa.String(length=255), nullable=False),
        sa.Column("supplier_name", sa.String(length=255), nullable=False),
        sa.Column("unit", sa.String(length=32), nullable=False),
    )
    op.create_index("ix_jobsite_materials_jobsite_id", "jobsite_materials", ["jobsite_id"])

    op.create_table(
        "jobsite_material_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "jobsite_material_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobsite_materials.id"),
            nullable=False,
        ),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("estimated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.CheckConstraint("rate >= 0", name="ck_jobsite_material_rates_rate_non_negative"),
    )
    op.create_index(
        "ix_jobsite_material_rates_material_effective",
        "jobsite_material_rates",
        ["jobsite_material_id", "effective_date"],
    )

    op.create_table(
        "jobsite_trucking_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("truck_type", sa.String(length=128), nullable=False),
        sa.Column("rate_type", trucking_rate_type, nullable=False, server_default="hour"),
        sa.Column("rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.CheckConstraint("rate >= 0", name="ck_jobsite_trucking_rates_rate_non_negative"),
    )
    op.create_index(
        "ix_jobsite_trucking_rates_jobsite_type",
        "jobsite_trucking_rates",
        ["jobsite_id", "truck_type", "effective_date"],
    )

    op.create_table(
        "employee_work",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("employee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("crew_type", sa.String(length=64), nullable=False),
        sa.Column("job_title", sa.String(length=255), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("end_time >= start_time", name="ck_employee_work_end_after_start"),
    )
    op.create_index("ix_employee_work_jobsite_start", "employee_work", ["jobsite_id", "start_time"])
    op.create_index("ix_employee_work_employee_id", "employee_work", ["employee_id"])

    op.create_table(
        "vehicle_work",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("vehicle_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("crew_type", sa.String(length=64), nullable=False),
        sa.Column("work_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hours", sa.Numeric(8, 2), nullable=False),
        sa.CheckConstraint("hours >= 0", name="ck_vehicle_work_hours_non_negative"),
    )
    op.create_index("ix_vehicle_work_jobsite_date", "vehicle_work", ["jobsite_id", "work_date"])
    op.create_index("ix_vehicle_work_vehicle_id", "vehicle_work", ["vehicle_id"])

    op.create_table(
        "material_shipments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("jobsite_material_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("crew_type", sa.String(length=64), nullable=False),
        sa.Column("shipment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("truck_type", sa.String(length=128), nullable=True),
        sa.Column("trucking_hours", sa.Numeric(8, 2), nullable=True),
        sa.CheckConstraint("quantity >= 0", name="ck_material_shipments_quantity_non_negative"),
    )
    op.create_index("ix_material_shipments_jobsite_date", "material_shipments", ["jobsite_id", "shipment_date"])
    op.create_index("ix_material_shipments_jobsite_material_id", "material_shipments", ["jobsite_material_id"])

    op.create_table(
        "productions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("crew_type", sa.String(length=64), nullable=False),
        sa.Column("work_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("job_title", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit", sa.String(length=32), nullable=False),
        sa.Column("hours", sa.Numeric(8, 2), nullable=False, server_default=sa.text("0")),
    )
    op.create_index("ix_productions_jobsite_date", "productions", ["jobsite_id", "work_date"])

    op.create_table(
        "invoices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("direction", invoice_direction, nullable=False),
        sa.Column("invoice_number", sa.String(length=128), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("invoice_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("internal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("accrual", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint("amount >= 0", name="ck_invoices_amount_non_negative"),
    )
    op.create_index("ix_invoices_jobsite_date", "invoices", ["jobsite_id", "invoice_date"])

    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="America/Edmonton"),
    )

    op.create_table(
        "system_rates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("kind", system_rate_kind, nullable=False),
        sa.Column("percent", sa.Numeric(6, 2), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.CheckConstraint("percent >= 0", name="ck_system_rates_percent_non_negative"),
        sa.UniqueConstraint("kind", "effective_date", name="uq_system_rates_kind_effective"),
    )

    op.create_table(
        "jobsite_day_reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("report_date", sa.Date(), nullable=False),
        sa.Column("start_of_day", sa.DateTime(timezone=True), nullable=False),
        *_amount_columns(*ON_SITE_COLUMNS),
        *_document_columns("crew_types", "employees", "vehicles", "materials", "trucking", "productions", "issues"),
        *_rebuild_state_columns(),
        sa.UniqueConstraint("jobsite_id", "start_of_day", name="uq_jobsite_day_reports_jobsite_day"),
    )
    op.create_index("ix_jobsite_day_reports_jobsite_start", "jobsite_day_reports", ["jobsite_id", "start_of_day"])
    op.create_index("ix_jobsite_day_reports_update_status", "jobsite_day_reports", ["update_status"])

    op.create_table(
        "jobsite_period_reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("jobsite_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("jobsites.id"), nullable=False),
        sa.Column("granularity", period_granularity, nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        *_amount_columns(*ON_SITE_COLUMNS),
        *_amount_columns(
            "external_expense_invoice_value",
            "internal_expense_invoice_value",
            "accrual_expense_invoice_value",
            "external_revenue_invoice_value",
            "internal_revenue_invoice_value",
            "accrual_revenue_invoice_value",
        ),
        *_amount_columns(
            "overhead_percent",
            "external_surcharge_percent",
            "internal_expenses",
            "internal_expenses_with_overhead",
            "total_expenses",
            "total_revenue",
            "net_income",
            "margin",
        ),
        *_document_columns("day_report_ids", "expense_invoices", "revenue_invoices", "crew_types", "issues"),
        *_rebuild_state_columns(),
        sa.UniqueConstraint(
            "jobsite_id",
            "granularity",
            "period_start",
            name="uq_jobsite_period_reports_jobsite_granularity_start",
        ),
    )
    op.create_index(
        "ix_jobsite_period_reports_granularity_status",
        "jobsite_period_reports",
        ["granularity", "update_status"],
    )

    op.create_table(
        "jobsite_year_master_reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False, unique=True),
        sa.Column("start_of_year", sa.DateTime(timezone=True), nullable=False),
        *_document_columns("reports"),
        *_rebuild_state_columns(),
    )
    op.create_index("ix_jobsite_year_master_reports_update_status", "jobsite_year_master_reports", ["update_status"])


def downgrade() -> None:
    op.drop_index("ix_jobsite_year_master_reports_update_status", table_name="jobsite_year_master_reports")
    op.drop_table("jobsite_year_master_reports")

    op.drop_index("ix_jobsite_period_reports_granularity_status", table_name="jobsite_period_reports")
    op.drop_table("jobsite_period_reports")

    op.drop_index("ix_jobsite_day_reports_update_status", table_name="jobsite_day_reports")
    op.drop_index("ix_jobsite_day_reports_jobsite_start", table_name="jobsite_day_reports")
    op.drop_table("jobsite_day_reports")

    op.drop_table("system_rates")
    op.drop_table("system_settings")

    op.drop_index("ix_invoices_jobsite_date", table_name="invoices")
    op.drop_table("invoices")

    op.drop_index("ix_productions_jobsite_date", table_name="productions")
    op.drop_table("productions")

    op.drop_index("ix_material_shipments_jobsite_material_id", table_name="material_shipments")
    op.drop_index("ix_material_shipments_jobsite_date", table_name="material_shipments")
    op.drop_table("material_shipments")

    op.drop_index("ix_vehicle_work_vehicle_id", table_name="vehicle_work")
    op.drop_index("ix_vehicle_work_jobsite_date", table_name="vehicle_work")
    op.drop_table("vehicle_work")

    op.drop_index("ix_employee_work_employee_id", table_name="employee_work")
    op.drop_index("ix_employee_work_jobsite_start", table_name="employee_work")
    op.drop_table("employee_work")

    op.drop_index("ix_jobsite_trucking_rates_jobsite_type", table_name="jobsite_trucking_rates")
    op.drop_table("jobsite_trucking_rates")

    op.drop_index("ix_jobsite_material_rates_material_effective", table_name="jobsite_material_rates")
    op.drop_table("jobsite_material_rates")

    op.drop_index("ix_jobsite_materials_jobsite_id", table_name="jobsite_materials")
    op.drop_table("jobsite_materials")

    op.drop_index("ix_vehicle_type_default_rates_type_effective", table_name="vehicle_type_default_rates")
    op.drop_table("vehicle_type_default_rates")

    op.drop_index("ix_vehicle_rates_vehicle_effective", table_name="vehicle_rates")
    op.drop_table("vehicle_rates")

    op.drop_table("vehicles")

    op.drop_index("ix_employee_rates_employee_effective", table_name="employee_rates")
    op.drop_table("employee_rates")

    op.drop_table("employees")
    op.drop_table("jobsites")

    for enum_type in (period_granularity, update_status, system_rate_kind, invoice_direction, trucking_rate_type):
        enum_type.drop(op.get_bind(), checkfirst=True)
