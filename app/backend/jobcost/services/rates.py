"""Rate resolution, issue bookkeeping and the per-rebuild configuration snapshot."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from jobcost.core.config import Settings, get_settings
from jobcost.core.errors import ConfigurationError
from jobcost.core.periods import load_timezone
from jobcost.models.entities import SystemRateKind
from jobcost.repositories.record_repository import RecordRepository

ZERO = Decimal("0")
Q2 = Decimal("0.01")
Q4 = Decimal("0.0001")
HUNDRED = Decimal("100")


def q2(value: Decimal) -> Decimal:
    return value.quantize(Q2)


def q4(value: Decimal) -> Decimal:
    return value.quantize(Q4)


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class DatedRate(Protocol):
    rate: Decimal
    effective_date: date


def effective_rate(rates: Sequence[DatedRate], day: date) -> DatedRate | None:
    """Latest rate row whose ``effective_date`` is on or before ``day``."""

    chosen = None
    for row in rates:
        if row.effective_date <= day and (chosen is None or row.effective_date >= chosen.effective_date):
            chosen = row
    return chosen


def rate_for_date(rates: Sequence[DatedRate], day: date) -> Decimal:
    row = effective_rate(rates, day)
    if row is None:
        return ZERO
    return to_decimal(row.rate)


class IssueType(str, enum.Enum):
    EMPLOYEE_RATE_ZERO = "EMPLOYEE_RATE_ZERO"
    VEHICLE_RATE_ZERO = "VEHICLE_RATE_ZERO"
    MATERIAL_RATE_ZERO = "MATERIAL_RATE_ZERO"
    MATERIAL_ESTIMATED_RATE = "MATERIAL_ESTIMATED_RATE"
    TRUCKING_RATE_ZERO = "TRUCKING_RATE_ZERO"
    NON_COSTED_MATERIALS = "NON_COSTED_MATERIALS"
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    VEHICLE_NOT_FOUND = "VEHICLE_NOT_FOUND"
    MATERIAL_NOT_FOUND = "MATERIAL_NOT_FOUND"
    ESTIMATED_RATE_AFTER_PERIOD_CLOSE = "ESTIMATED_RATE_AFTER_PERIOD_CLOSE"


@dataclass(frozen=True, slots=True)
class ReportIssue:
    type: IssueType
    entity_id: str | None = None
    count: int = 1

    def to_json(self) -> dict[str, Any]:
        return {"type": self.type.value, "entity_id": self.entity_id, "count": self.count}

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> ReportIssue:
        return cls(
            type=IssueType(payload["type"]),
            entity_id=payload.get("entity_id"),
            count=int(payload.get("count", 1)),
        )


def merge_issues(issues: Iterable[ReportIssue]) -> list[ReportIssue]:
    """Collapse issues sharing a type and entity into one, summing their counts."""

    counts: dict[tuple[IssueType, str | None], int] = {}
    for issue in issues:
        key = (issue.type, issue.entity_id)
        counts[key] = counts.get(key, 0) + issue.count
    return [
        ReportIssue(type=issue_type, entity_id=entity_id, count=count)
        for (issue_type, entity_id), count in sorted(counts.items(), key=lambda item: (item[0][0].value, item[0][1] or ""))
    ]


@dataclass(frozen=True, slots=True)
class PercentRate:
    rate: Decimal
    effective_date: date


@dataclass(frozen=True, slots=True)
class OrganizationConfig:
    """Organization settings read once at the start of a rebuild.

    Every figure a single rebuild derives comes from the same snapshot, so a
    concurrent settings edit cannot produce a report that mixes two versions.
    """

    timezone: ZoneInfo
    overhead_rates: tuple[PercentRate, ...]
    surcharge_rates: tuple[PercentRate, ...]
    default_surcharge_percent: Decimal

    @classmethod
    def load(cls, db: Session, settings: Settings | None = None) -> OrganizationConfig:
        settings = settings or get_settings()
        repo = RecordRepository(db)
        system = repo.get_system_settings()
        if system is None:
            raise ConfigurationError("System settings have not been configured.")
        return cls(
            timezone=load_timezone(system.timezone),
            overhead_rates=tuple(
                PercentRate(rate=to_decimal(row.percent), effective_date=row.effective_date)
                for row in repo.list_system_rates(SystemRateKind.INTERNAL_OVERHEAD)
            ),
            surcharge_rates=tuple(
                PercentRate(rate=to_decimal(row.percent), effective_date=row.effective_date)
                for row in repo.list_system_rates(SystemRateKind.EXTERNAL_INVOICE_SURCHARGE)
            ),
            default_surcharge_percent=to_decimal(settings.default_external_surcharge_percent),
        )

    def overhead_percent(self, day: date) -> Decimal:
        if not self.overhead_rates:
            raise ConfigurationError("No internal overhead rates are configured.")
        return self._percent_for(self.overhead_rates, day)

    def surcharge_percent(self, day: date) -> Decimal:
        if not self.surcharge_rates:
            return self.default_surcharge_percent
        return self._percent_for(self.surcharge_rates, day)

    @staticmethod
    def _percent_for(rates: tuple[PercentRate, ...], day: date) -> Decimal:
        row = effective_rate(rates, day)
        if row is None:
            # Periods older than the first configured rate use that first rate.
            row = min(rates, key=lambda item: item.effective_date)
        return row.rate
