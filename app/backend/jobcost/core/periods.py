"""Timezone-anchored period normalization.

Raw timestamps are stored in UTC. A record belongs to a calendar day, month
or year only after conversion into the organization timezone, so every
aggregate key is computed here: the local period is found first, then its
local midnight boundary is converted back into a UTC instant.
"""

from __future__ import annotations

import enum
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jobcost.core.errors import ConfigurationError


class PeriodGranularity(str, enum.Enum):
    DAY = "day"
    MONTH = "month"
    YEAR = "year"


def load_timezone(name: str | None) -> ZoneInfo:
    if not name or not name.strip():
        raise ConfigurationError("Organization timezone is not configured.")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown organization timezone: {name!r}.") from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to already be UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(instant: datetime, tz: ZoneInfo) -> date:
    return as_utc(instant).astimezone(tz).date()


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    """UTC instant of 00:00 local time on ``day``."""

    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def first_day_of_period(day: date, granularity: PeriodGranularity) -> date:
    if granularity is PeriodGranularity.DAY:
        return day
    if granularity is PeriodGranularity.MONTH:
        return date(day.year, day.month, 1)
    return date(day.year, 1, 1)


def first_day_of_next_period(day: date, granularity: PeriodGranularity) -> date:
    first = first_day_of_period(day, granularity)
    if granularity is PeriodGranularity.DAY:
        return first + timedelta(days=1)
    if granularity is PeriodGranularity.MONTH:
        if first.month == 12:
            return date(first.year + 1, 1, 1)
        return date(first.year, first.month + 1, 1)
    return date(first.year + 1, 1, 1)


def period_start(instant: datetime, granularity: PeriodGranularity, tz: ZoneInfo) -> datetime:
    return local_midnight(first_day_of_period(local_date(instant, tz), granularity), tz)


def period_bounds(instant: datetime, granularity: PeriodGranularity, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` UTC bounds of the local period containing ``instant``."""

    day = local_date(instant, tz)
    return (
        local_midnight(first_day_of_period(day, granularity), tz),
        local_midnight(first_day_of_next_period(day, granularity), tz),
    )


def day_bounds(day: date, granularity: PeriodGranularity, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """Half-open UTC bounds of the local period containing the calendar ``day``."""

    return (
        local_midnight(first_day_of_period(day, granularity), tz),
        local_midnight(first_day_of_next_period(day, granularity), tz),
    )


def start_of_day(instant: datetime, tz: ZoneInfo) -> datetime:
    return period_start(instant, PeriodGranularity.DAY, tz)


def start_of_month(instant: datetime, tz: ZoneInfo) -> datetime:
    return period_start(instant, PeriodGranularity.MONTH, tz)


def start_of_year(instant: datetime, tz: ZoneInfo) -> datetime:
    return period_start(instant, PeriodGranularity.YEAR, tz)
