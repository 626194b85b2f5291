"""Read access to raw operational records and organization configuration."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from jobcost.models.entities import (
    Employee,
    EmployeeRate,
    EmployeeWork,
    Invoice,
    Jobsite,
    JobsiteMaterial,
    JobsiteMaterialRate,
    JobsiteTruckingRate,
    MaterialShipment,
    Production,
    SystemRate,
    SystemRateKind,
    SystemSettings,
    Vehicle,
    VehicleRate,
    VehicleTypeDefaultRate,
    VehicleWork,
)


def _group_by(rows: Iterable, attribute: str) -> dict:
    grouped: dict = {}
    for row in rows:
        grouped.setdefault(getattr(row, attribute), []).append(row)
    return grouped


class RecordRepository:
    """Queries against the raw record store used by report builders and invalidation."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------- Organization configuration ----------
    def get_system_settings(self) -> SystemSettings | None:
        return self.db.scalar(select(SystemSettings).order_by(SystemSettings.id.asc()).limit(1))

    def list_system_rates(self, kind: SystemRateKind) -> list[SystemRate]:
        return self.db.scalars(
            select(SystemRate)
            .where(SystemRate.kind == kind)
            .order_by(SystemRate.effective_date.asc())
        ).all()

    # ---------- Jobsites ----------
    def list_jobsites(self, jobsite_ids: Iterable[UUID]) -> list[Jobsite]:
        ids = set(jobsite_ids)
        if not ids:
            return []
        return self.db.scalars(select(Jobsite).where(Jobsite.id.in_(ids)).order_by(Jobsite.code.asc())).all()

    def list_jobsite_ids_with_invoices(self, *, start: datetime, end: datetime) -> set[UUID]:
        return set(
            self.db.scalars(
                select(Invoice.jobsite_id)
                .where(Invoice.invoice_date >= start, Invoice.invoice_date < end)
                .distinct()
            ).all()
        )

    # ---------- Day lines ----------
    def list_employee_work(self, jobsite_id: UUID, *, start: datetime, end: datetime) -> list[EmployeeWork]:
        return self.db.scalars(
            select(EmployeeWork)
            .where(
                EmployeeWork.jobsite_id == jobsite_id,
                EmployeeWork.start_time >= start,
                EmployeeWork.start_time < end,
            )
            .order_by(EmployeeWork.start_time.asc(), EmployeeWork.id.asc())
        ).all()

    def list_vehicle_work(self, jobsite_id: UUID, *, start: datetime, end: datetime) -> list[VehicleWork]:
        return self.db.scalars(
            select(VehicleWork)
            .where(
                VehicleWork.jobsite_id == jobsite_id,
                VehicleWork.work_date >= start,
                VehicleWork.work_date < end,
            )
            .order_by(VehicleWork.work_date.asc(), VehicleWork.id.asc())
        ).all()

    def list_material_shipments(self, jobsite_id: UUID, *, start: datetime, end: datetime) -> list[MaterialShipment]:
        return self.db.scalars(
            select(MaterialShipment)
            .where(
                MaterialShipment.jobsite_id == jobsite_id,
                MaterialShipment.shipment_date >= start,
                MaterialShipment.shipment_date < end,
            )
            .order_by(MaterialShipment.shipment_date.asc(), MaterialShipment.id.asc())
        ).all()

    def list_productions(self, jobsite_id: UUID, *, start: datetime, end: datetime) -> list[Production]:
        return self.db.scalars(
            select(Production)
            .where(
                Production.jobsite_id == jobsite_id,
                Production.work_date >= start,
                Production.work_date < end,
            )
            .order_by(Production.work_date.asc(), Production.id.asc())
        ).all()

    def list_invoices(self, jobsite_id: UUID, *, start: datetime, end: datetime) -> list[Invoice]:
        return self.db.scalars(
            select(Invoice)
            .where(
                Invoice.jobsite_id == jobsite_id,
                Invoice.invoice_date >= start,
                Invoice.invoice_date < end,
            )
            .order_by(Invoice.invoice_date.asc(), Invoice.id.asc())
        ).all()

    # ---------- Referenced entities and their rates ----------
    def get_employees(self, employee_ids: Iterable[UUID]) -> dict[UUID, Employee]:
        ids = set(employee_ids)
        if not ids:
            return {}
        return {row.id: row for row in self.db.scalars(select(Employee).where(Employee.id.in_(ids))).all()}

    def list_employee_rates(self, employee_ids: Iterable[UUID]) -> dict[UUID, list[EmployeeRate]]:
        ids = set(employee_ids)
        if not ids:
            return {}
        rows = self.db.scalars(
            select(EmployeeRate)
            .where(EmployeeRate.employee_id.in_(ids))
            .order_by(EmployeeRate.effective_date.asc())
        ).all()
        return _group_by(rows, "employee_id")

    def get_vehicles(self, vehicle_ids: Iterable[UUID]) -> dict[UUID, Vehicle]:
        ids = set(vehicle_ids)
        if not ids:
            return {}
        return {row.id: row for row in self.db.scalars(select(Vehicle).where(Vehicle.id.in_(ids))).all()}

    def list_vehicle_rates(self, vehicle_ids: Iterable[UUID]) -> dict[UUID, list[VehicleRate]]:
        ids = set(vehicle_ids)
        if not ids:
            return {}
        rows = self.db.scalars(
            select(VehicleRate)
            .where(VehicleRate.vehicle_id.in_(ids))
            .order_by(VehicleRate.effective_date.asc())
        ).all()
        return _group_by(rows, "vehicle_id")

    def list_vehicle_type_default_rates(self, vehicle_types: Iterable[str]) -> dict[str, list[VehicleTypeDefaultRate]]:
        types = set(vehicle_types)
        if not types:
            return {}
        rows = self.db.scalars(
            select(VehicleTypeDefaultRate)
            .where(VehicleTypeDefaultRate.vehicle_type.in_(types))
            .order_by(VehicleTypeDefaultRate.effective_date.asc())
        ).all()
        return _group_by(rows, "vehicle_type")

    def get_jobsite_materials(self, jobsite_material_ids: Iterable[UUID]) -> dict[UUID, JobsiteMaterial]:
        ids = set(jobsite_material_ids)
        if not ids:
            return {}
        return {
            row.id: row
            for row in self.db.scalars(select(JobsiteMaterial).where(JobsiteMaterial.id.in_(ids))).all()
        }

    def list_jobsite_material_rates(self, jobsite_material_ids: Iterable[UUID]) -> dict[UUID, list[JobsiteMaterialRate]]:
        ids = set(jobsite_material_ids)
        if not ids:
            return {}
        rows = self.db.scalars(
            select(JobsiteMaterialRate)
            .where(JobsiteMaterialRate.jobsite_material_id.in_(ids))
            .order_by(JobsiteMaterialRate.effective_date.asc())
        ).all()
        return _group_by(rows, "jobsite_material_id")

    def list_trucking_rates(self, jobsite_id: UUID) -> dict[str, list[JobsiteTruckingRate]]:
        rows = self.db.scalars(
            select(JobsiteTruckingRate)
            .where(JobsiteTruckingRate.jobsite_id == jobsite_id)
            .order_by(JobsiteTruckingRate.effective_date.asc())
        ).all()
        return _group_by(rows, "truck_type")

    # ---------- Activity lookups for invalidation ----------
    def list_employee_activity(self, employee_id: UUID) -> list[tuple[UUID, datetime]]:
        return self.db.execute(
            select(EmployeeWork.jobsite_id, EmployeeWork.start_time).where(EmployeeWork.employee_id == employee_id)
        ).all()

    def list_vehicle_activity(self, vehicle_id: UUID) -> list[tuple[UUID, datetime]]:
        return self.db.execute(
            select(VehicleWork.jobsite_id, VehicleWork.work_date).where(VehicleWork.vehicle_id == vehicle_id)
        ).all()

    def list_jobsite_material_activity(self, jobsite_material_id: UUID) -> list[tuple[UUID, datetime]]:
        return self.db.execute(
            select(MaterialShipment.jobsite_id, MaterialShipment.shipment_date).where(
                MaterialShipment.jobsite_material_id == jobsite_material_id
            )
        ).all()

    def list_jobsite_activity_times(self, jobsite_id: UUID) -> list[datetime]:
        times: list[datetime] = []
        times.extend(
            self.db.scalars(select(EmployeeWork.start_time).where(EmployeeWork.jobsite_id == jobsite_id)).all()
        )
        times.extend(self.db.scalars(select(VehicleWork.work_date).where(VehicleWork.jobsite_id == jobsite_id)).all())
        times.extend(
            self.db.scalars(
                select(MaterialShipment.shipment_date).where(MaterialShipment.jobsite_id == jobsite_id)
            ).all()
        )
        times.extend(self.db.scalars(select(Production.work_date).where(Production.jobsite_id == jobsite_id)).all())
        return times
