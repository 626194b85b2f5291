"""Report read endpoints and manual rebuild requests."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, model_validator
from sqlalchemy.orm import Session

from jobcost.core.periods import PeriodGranularity
from jobcost.db.dependencies import get_db_session
from jobcost.models.reports import AggregateLevel
from jobcost.services.report_query_service import ReportQueryService

router = APIRouter(tags=["reports"])


class RebuildRequestPayload(BaseModel):
    level: AggregateLevel
    jobsite_id: UUID | None = None
    # Any local date inside the period to rebuild.
    on_date: date

    @model_validator(mode="after")
    def require_jobsite(self) -> RebuildRequestPayload:
        if self.level is not AggregateLevel.MASTER and self.jobsite_id is None:
            raise ValueError(f"jobsite_id is required for {self.level.value} reports")
        return self


def _service(db: Session) -> ReportQueryService:
    return ReportQueryService(db)


@router.get("/jobsites/{jobsite_id}/day-reports/{day}")
def get_day_report(
    jobsite_id: UUID,
    day: date,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).get_day_report(jobsite_id, day)


@router.get("/jobsites/{jobsite_id}/month-reports/{month_start}")
def get_month_report(
    jobsite_id: UUID,
    month_start: date,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    if month_start.day != 1:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="month_start must be the first day of a month",
        )
    return _service(db).get_period_report(jobsite_id, month_start, PeriodGranularity.MONTH)


@router.get("/jobsites/{jobsite_id}/year-reports/{year}")
def get_year_report(
    jobsite_id: UUID,
    year: int = Path(ge=1900, le=9999),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).get_period_report(jobsite_id, date(year, 1, 1), PeriodGranularity.YEAR)


@router.get("/master-reports/{fiscal_year}")
def get_master_report(
    fiscal_year: int = Path(ge=1900, le=9999),
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    return _service(db).get_master_report(fiscal_year)


@router.post("/reports/rebuild-requests", status_code=202)
def request_rebuild(
    payload: RebuildRequestPayload,
    db: Session = Depends(get_db_session),
) -> dict[str, object]:
    service = _service(db)
    ref = service.aggregate_ref(payload.level, payload.jobsite_id, payload.on_date)
    return service.request_rebuild(ref)
