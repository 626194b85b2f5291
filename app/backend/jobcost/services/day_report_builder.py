"""Day report construction from raw field records.

``load_day_inputs`` gathers everything a day report depends on and
``build_day_report`` turns that into a ``DayReportDocument`` without touching
the database, so rebuilding the same inputs twice yields the same document.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from jobcost.core.periods import PeriodGranularity, as_utc, day_bounds
from jobcost.models.entities import (
    Employee,
    EmployeeRate,
    EmployeeWork,
    JobsiteMaterial,
    JobsiteMaterialRate,
    JobsiteTruckingRate,
    MaterialShipment,
    Production,
    TruckingRateType,
    Vehicle,
    VehicleRate,
    VehicleTypeDefaultRate,
    VehicleWork,
)
from jobcost.models.reports import ON_SITE_SUMMARY_FIELDS
from jobcost.repositories.record_repository import RecordRepository
from jobcost.services.rates import (
    ZERO,
    IssueType,
    OrganizationConfig,
    ReportIssue,
    effective_rate,
    merge_issues,
    q4,
    rate_for_date,
    to_decimal,
)

SECONDS_PER_HOUR = Decimal("3600")


@dataclass(slots=True)
class OnSiteSummary:
    employee_hours: Decimal = ZERO
    employee_cost: Decimal = ZERO
    vehicle_hours: Decimal = ZERO
    vehicle_cost: Decimal = ZERO
    material_quantity: Decimal = ZERO
    material_cost: Decimal = ZERO
    non_costed_material_quantity: Decimal = ZERO
    trucking_quantity: Decimal = ZERO
    trucking_hours: Decimal = ZERO
    trucking_cost: Decimal = ZERO

    def add(self, other: OnSiteSummary) -> None:
        for name in ON_SITE_SUMMARY_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    @property
    def internal_cost(self) -> Decimal:
        return self.employee_cost + self.vehicle_cost + self.material_cost + self.trucking_cost

    def to_values(self) -> dict[str, Decimal]:
        return {name: q4(getattr(self, name)) for name in ON_SITE_SUMMARY_FIELDS}

    def to_json(self) -> dict[str, str]:
        return {name: str(value) for name, value in self.to_values().items()}

    @classmethod
    def from_mapping(cls, payload: Any) -> OnSiteSummary:
        """Build from a row object or a JSON bucket."""

        if isinstance(payload, dict):
            return cls(**{name: to_decimal(payload.get(name)) for name in ON_SITE_SUMMARY_FIELDS})
        return cls(**{name: to_decimal(getattr(payload, name)) for name in ON_SITE_SUMMARY_FIELDS})


@dataclass(slots=True)
class DayInputs:
    jobsite_id: UUID
    report_date: date
    employee_work: list[EmployeeWork] = field(default_factory=list)
    vehicle_work: list[VehicleWork] = field(default_factory=list)
    shipments: list[MaterialShipment] = field(default_factory=list)
    productions: list[Production] = field(default_factory=list)
    employees: dict[UUID, Employee] = field(default_factory=dict)
    employee_rates: dict[UUID, list[EmployeeRate]] = field(default_factory=dict)
    vehicles: dict[UUID, Vehicle] = field(default_factory=dict)
    vehicle_rates: dict[UUID, list[VehicleRate]] = field(default_factory=dict)
    vehicle_type_rates: dict[str, list[VehicleTypeDefaultRate]] = field(default_factory=dict)
    materials: dict[UUID, JobsiteMaterial] = field(default_factory=dict)
    material_rates: dict[UUID, list[JobsiteMaterialRate]] = field(default_factory=dict)
    trucking_rates: dict[str, list[JobsiteTruckingRate]] = field(default_factory=dict)


@dataclass(slots=True)
class DayReportDocument:
    summary: OnSiteSummary
    crew_types: list[dict[str, Any]]
    employees: list[dict[str, Any]]
    vehicles: list[dict[str, Any]]
    materials: list[dict[str, Any]]
    trucking: list[dict[str, Any]]
    productions: list[dict[str, Any]]
    issues: list[ReportIssue]

    def to_values(self) -> dict[str, Any]:
        values: dict[str, Any] = self.summary.to_values()
        values.update(
            crew_types=self.crew_types,
            employees=self.employees,
            vehicles=self.vehicles,
            materials=self.materials,
            trucking=self.trucking,
            productions=self.productions,
            issues=[issue.to_json() for issue in self.issues],
        )
        return values


def load_day_inputs(
    records: RecordRepository,
    jobsite_id: UUID,
    report_date: date,
    config: OrganizationConfig,
) -> DayInputs:
    start, end = day_bounds(report_date, PeriodGranularity.DAY, config.timezone)
    inputs = DayInputs(
        jobsite_id=jobsite_id,
        report_date=report_date,
        employee_work=records.list_employee_work(jobsite_id, start=start, end=end),
        vehicle_work=records.list_vehicle_work(jobsite_id, start=start, end=end),
        shipments=records.list_material_shipments(jobsite_id, start=start, end=end),
        productions=records.list_productions(jobsite_id, start=start, end=end),
    )

    employee_ids = {row.employee_id for row in inputs.employee_work}
    inputs.employees = records.get_employees(employee_ids)
    inputs.employee_rates = records.list_employee_rates(employee_ids)

    vehicle_ids = {row.vehicle_id for row in inputs.vehicle_work}
    inputs.vehicles = records.get_vehicles(vehicle_ids)
    inputs.vehicle_rates = records.list_vehicle_rates(vehicle_ids)
    inputs.vehicle_type_rates = records.list_vehicle_type_default_rates(
        vehicle.vehicle_type for vehicle in inputs.vehicles.values()
    )

    material_ids = {row.jobsite_material_id for row in inputs.shipments if row.jobsite_material_id is not None}
    inputs.materials = records.get_jobsite_materials(material_ids)
    inputs.material_rates = records.list_jobsite_material_rates(material_ids)
    if any(row.truck_type for row in inputs.shipments):
        inputs.trucking_rates = records.list_trucking_rates(jobsite_id)
    return inputs


def _hours_between(start: datetime, end: datetime) -> Decimal:
    seconds = int((as_utc(end) - as_utc(start)).total_seconds())
    return Decimal(max(seconds, 0)) / SECONDS_PER_HOUR


def _bucket(buckets: dict[str, OnSiteSummary], crew_type: str) -> OnSiteSummary:
    if crew_type not in buckets:
        buckets[crew_type] = OnSiteSummary()
    return buckets[crew_type]


def _line_entry(entries: dict[tuple, dict[str, Any]], key: tuple, **defaults: Any) -> dict[str, Any]:
    if key not in entries:
        entries[key] = {**defaults, "record_ids": []}
    return entries[key]


def _finalize_lines(entries: dict[tuple, dict[str, Any]], decimal_fields: tuple[str, ...]) -> list[dict[str, Any]]:
    lines = []
    for entry in entries.values():
        line = dict(entry)
        for name in decimal_fields:
            line[name] = str(q4(line[name]))
        lines.append(line)
    return lines


def build_day_report(inputs: DayInputs) -> DayReportDocument:
    day = inputs.report_date
    buckets: dict[str, OnSiteSummary] = {}
    issues: list[ReportIssue] = []

    # ---------- Employees ----------
    employee_lines: dict[tuple, dict[str, Any]] = {}
    for work in inputs.employee_work:
        employee = inputs.employees.get(work.employee_id)
        hours = _hours_between(work.start_time, work.end_time)
        if employee is None:
            issues.append(ReportIssue(IssueType.EMPLOYEE_NOT_FOUND, str(work.employee_id)))
            rate = ZERO
        else:
            rate = rate_for_date(inputs.employee_rates.get(employee.id, []), day)
        cost = hours * rate

        line = _line_entry(
            employee_lines,
            (str(work.employee_id), work.crew_type),
            employee_id=str(work.employee_id),
            employee_name=employee.name if employee else None,
            crew_type=work.crew_type,
            job_title=work.job_title or (employee.job_title if employee else None),
            rate=rate,
            hours=ZERO,
            cost=ZERO,
        )
        line["hours"] += hours
        line["cost"] += cost
        line["record_ids"].append(str(work.id))

        bucket = _bucket(buckets, work.crew_type)
        bucket.employee_hours += hours
        bucket.employee_cost += cost
    for line in employee_lines.values():
        if line["employee_name"] is not None and line["rate"] == ZERO:
            issues.append(ReportIssue(IssueType.EMPLOYEE_RATE_ZERO, line["employee_id"]))

    # ---------- Vehicles ----------
    vehicle_lines: dict[tuple, dict[str, Any]] = {}
    for work in inputs.vehicle_work:
        vehicle = inputs.vehicles.get(work.vehicle_id)
        hours = to_decimal(work.hours)
        if vehicle is None:
            issues.append(ReportIssue(IssueType.VEHICLE_NOT_FOUND, str(work.vehicle_id)))
            rate = ZERO
        else:
            row = effective_rate(inputs.vehicle_rates.get(vehicle.id, []), day)
            if row is None:
                row = effective_rate(inputs.vehicle_type_rates.get(vehicle.vehicle_type, []), day)
            rate = to_decimal(row.rate) if row is not None else ZERO
        cost = hours * rate

        line = _line_entry(
            vehicle_lines,
            (str(work.vehicle_id), work.crew_type),
            vehicle_id=str(work.vehicle_id),
            vehicle_code=vehicle.code if vehicle else None,
            vehicle_name=vehicle.name if vehicle else None,
            crew_type=work.crew_type,
            rate=rate,
            hours=ZERO,
            cost=ZERO,
        )
        line["hours"] += hours
        line["cost"] += cost
        line["record_ids"].append(str(work.id))

        bucket = _bucket(buckets, work.crew_type)
        bucket.vehicle_hours += hours
        bucket.vehicle_cost += cost
    for line in vehicle_lines.values():
        if line["vehicle_name"] is not None and line["rate"] == ZERO:
            issues.append(ReportIssue(IssueType.VEHICLE_RATE_ZERO, line["vehicle_id"]))

    # ---------- Materials and trucking ----------
    material_lines: dict[tuple, dict[str, Any]] = {}
    trucking_lines: dict[tuple, dict[str, Any]] = {}
    non_costed_count = 0
    for shipment in inputs.shipments:
        quantity = to_decimal(shipment.quantity)
        bucket = _bucket(buckets, shipment.crew_type)

        if shipment.jobsite_material_id is None:
            non_costed_count += 1
            bucket.non_costed_material_quantity += quantity
        else:
            material = inputs.materials.get(shipment.jobsite_material_id)
            estimated = False
            if material is None:
                issues.append(ReportIssue(IssueType.MATERIAL_NOT_FOUND, str(shipment.jobsite_material_id)))
                rate = ZERO
            else:
                row = effective_rate(inputs.material_rates.get(material.id, []), day)
                rate = to_decimal(row.rate) if row is not None else ZERO
                estimated = bool(row.estimated) if row is not None else False
            cost = quantity * rate

            line = _line_entry(
                material_lines,
                (str(shipment.jobsite_material_id), shipment.crew_type),
                jobsite_material_id=str(shipment.jobsite_material_id),
                material_name=material.material_name if material else None,
                supplier_name=material.supplier_name if material else None,
                unit=material.unit if material else None,
                crew_type=shipment.crew_type,
                rate=rate,
                estimated=estimated,
                quantity=ZERO,
                cost=ZERO,
            )
            line["quantity"] += quantity
            line["cost"] += cost
            line["record_ids"].append(str(shipment.id))

            bucket.material_quantity += quantity
            bucket.material_cost += cost

        if shipment.truck_type:
            row = effective_rate(inputs.trucking_rates.get(shipment.truck_type, []), day)
            trucking_hours = to_decimal(shipment.trucking_hours)
            if row is None:
                rate = ZERO
                rate_type = None
                cost = ZERO
            else:
                rate = to_decimal(row.rate)
                rate_type = TruckingRateType(row.rate_type)
                cost = rate * (quantity if rate_type is TruckingRateType.QUANTITY else trucking_hours)

            line = _line_entry(
                trucking_lines,
                (shipment.truck_type, shipment.crew_type),
                truck_type=shipment.truck_type,
                crew_type=shipment.crew_type,
                rate=rate,
                rate_type=rate_type.value if rate_type else None,
                quantity=ZERO,
                hours=ZERO,
                cost=ZERO,
            )
            line["quantity"] += quantity
            line["hours"] += trucking_hours
            line["cost"] += cost
            line["record_ids"].append(str(shipment.id))

            bucket.trucking_quantity += quantity
            bucket.trucking_hours += trucking_hours
            bucket.trucking_cost += cost

    for line in material_lines.values():
        if line["material_name"] is None:
            continue
        if line["rate"] == ZERO:
            issues.append(ReportIssue(IssueType.MATERIAL_RATE_ZERO, line["jobsite_material_id"]))
        if line["estimated"]:
            issues.append(ReportIssue(IssueType.MATERIAL_ESTIMATED_RATE, line["jobsite_material_id"]))
    for line in trucking_lines.values():
        if line["rate"] == ZERO:
            issues.append(ReportIssue(IssueType.TRUCKING_RATE_ZERO, line["truck_type"]))
    if non_costed_count:
        issues.append(ReportIssue(IssueType.NON_COSTED_MATERIALS, None, non_costed_count))

    # ---------- Production ----------
    productions = []
    for production in inputs.productions:
        productions.append(
            {
                "id": str(production.id),
                "crew_type": production.crew_type,
                "job_title": production.job_title,
                "quantity": str(q4(to_decimal(production.quantity))),
                "unit": production.unit,
                "hours": str(q4(to_decimal(production.hours))),
            }
        )
        buckets.setdefault(production.crew_type, OnSiteSummary())

    summary = OnSiteSummary()
    crew_types = []
    for crew_type in sorted(buckets):
        # Totals are summed from the stored bucket values so they always reconcile.
        bucket = OnSiteSummary.from_mapping(buckets[crew_type].to_values())
        summary.add(bucket)
        crew_types.append({"crew_type": crew_type, **bucket.to_json()})

    return DayReportDocument(
        summary=summary,
        crew_types=crew_types,
        employees=_finalize_lines(employee_lines, ("rate", "hours", "cost")),
        vehicles=_finalize_lines(vehicle_lines, ("rate", "hours", "cost")),
        materials=_finalize_lines(material_lines, ("rate", "quantity", "cost")),
        trucking=_finalize_lines(trucking_lines, ("rate", "quantity", "hours", "cost")),
        productions=productions,
        issues=merge_issues(issues),
    )
