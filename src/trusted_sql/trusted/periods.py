"""
Relative Periods
================

Named reporting periods resolved against the tenant's local calendar.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


class Period(str, Enum):
    """Relative periods understood by the trusted aggregation service."""

    TODAY = "today"
    YESTERDAY = "yesterday"
    LAST_7_DAYS = "last7days"
    LAST_30_DAYS = "last30days"
    THIS_WEEK = "thisWeek"
    THIS_MONTH = "thisMonth"
    LAST_WEEK = "lastWeek"
    LAST_MONTH = "lastMonth"


# (days back to the first included day, days back to the last included day)
_OFFSETS = {
    Period.TODAY: (0, 0),
    Period.YESTERDAY: (1, 1),
    Period.LAST_7_DAYS: (6, 0),
    Period.THIS_WEEK: (6, 0),
    Period.LAST_30_DAYS: (29, 0),
    Period.THIS_MONTH: (29, 0),
    Period.LAST_WEEK: (13, 7),
    Period.LAST_MONTH: (59, 30),
}


@dataclass(frozen=True)
class DateRange:
    """Half-open UTC interval ``[start, end)``."""

    start: datetime
    end: datetime

    def iso_bounds(self) -> tuple[str, str]:
        """Bounds formatted like stored ``createdAt`` values."""
        fmt = "%Y-%m-%dT%H:%M:%S"
        return (
            self.start.astimezone(timezone.utc).strftime(fmt),
            self.end.astimezone(timezone.utc).strftime(fmt),
        )

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_day_range(day: date, tz_name: str = "UTC") -> DateRange:
    """Single local calendar day expressed in UTC."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return DateRange(start.astimezone(timezone.utc), end.astimezone(timezone.utc))


def resolve_period(
    period: Period | str | DateRange,
    tz_name: str = "UTC",
    clock: Clock | None = None,
) -> DateRange:
    """
    Resolve a relative period into a UTC date range.

    Args:
        period: Period name, Period member or an explicit DateRange
        tz_name: IANA timezone of the tenant
        clock: Returns the current instant; defaults to the wall clock

    Raises:
        ValueError: If the period name is unknown
    """
    if isinstance(period, DateRange):
        return period
    period = Period(period)

    now = (clock or utc_now)()
    local_today = now.astimezone(ZoneInfo(tz_name)).date()
    first_back, last_back = _OFFSETS[period]

    first = local_day_range(local_today - timedelta(days=first_back), tz_name)
    last = local_day_range(local_today - timedelta(days=last_back), tz_name)
    return DateRange(first.start, last.end)
