"""Change notifications from the record-keeping side of the application."""

from __future__ import annotations

import enum
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, model_validator
from sqlalchemy.orm import Session

from jobcost.db.dependencies import get_db_session
from jobcost.services.invalidation import InvalidationPropagator

router = APIRouter(prefix="/notifications", tags=["notifications"])


class RawRecordChangedPayload(BaseModel):
    jobsite_id: UUID
    affected_at: datetime
    affected_at_before: datetime | None = None
    jobsite_id_before: UUID | None = None


class InvoiceChangedPayload(BaseModel):
    jobsite_id: UUID
    invoice_at: datetime
    invoice_at_before: datetime | None = None
    jobsite_id_before: UUID | None = None


class RateSubject(str, enum.Enum):
    EMPLOYEE = "employee"
    VEHICLE = "vehicle"
    JOBSITE_MATERIAL = "jobsite_material"
    JOBSITE = "jobsite"
    SYSTEM = "system"


class RatesChangedPayload(BaseModel):
    subject: RateSubject
    entity_id: UUID | None = None

    @model_validator(mode="after")
    def require_entity(self) -> RatesChangedPayload:
        if self.subject is not RateSubject.SYSTEM and self.entity_id is None:
            raise ValueError(f"entity_id is required for {self.subject.value} rate changes")
        return self


def _propagator(db: Session) -> InvalidationPropagator:
    return InvalidationPropagator(db)


@router.post("/raw-record-changed", status_code=202)
def raw_record_changed(
    payload: RawRecordChangedPayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    requested = _propagator(db).on_raw_record_changed(
        payload.jobsite_id,
        payload.affected_at,
        affected_at_before=payload.affected_at_before,
        jobsite_id_before=payload.jobsite_id_before,
    )
    return {"requested_day_report_ids": [str(report_id) for report_id in requested]}


@router.post("/invoice-changed", status_code=202)
def invoice_changed(
    payload: InvoiceChangedPayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    requested = _propagator(db).on_invoice_changed(
        payload.jobsite_id,
        payload.invoice_at,
        invoice_at_before=payload.invoice_at_before,
        jobsite_id_before=payload.jobsite_id_before,
    )
    return {"requested_period_report_ids": [str(report_id) for report_id in requested]}


@router.post("/rates-changed", status_code=202)
def rates_changed(
    payload: RatesChangedPayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    propagator = _propagator(db)
    if payload.subject is RateSubject.SYSTEM:
        return {"requested_count": propagator.on_system_rates_changed()}

    handlers = {
        RateSubject.EMPLOYEE: propagator.on_employee_rates_changed,
        RateSubject.VEHICLE: propagator.on_vehicle_rates_changed,
        RateSubject.JOBSITE_MATERIAL: propagator.on_jobsite_material_rates_changed,
        RateSubject.JOBSITE: propagator.on_jobsite_changed,
    }
    requested = handlers[payload.subject](payload.entity_id)
    return {"requested_count": len(requested)}
