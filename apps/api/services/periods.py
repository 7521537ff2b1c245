"""Billing period and timestamp helpers."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


BILLING_PERIODS = ("day", "week", "15days", "month", "3months", "6months", "year")


@dataclass(frozen=True)
class BillingCycle:
    key: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes returned by drivers that drop tzinfo."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def cycle_for(reference: Optional[date] = None) -> BillingCycle:
    """Return the calendar-month billing cycle containing ``reference``."""
    current = reference or utc_now().date()
    last_day = calendar.monthrange(current.year, current.month)[1]
    return BillingCycle(
        key=f"{current.year:04d}-{current.month:02d}",
        start=date(current.year, current.month, 1),
        end=date(current.year, current.month, last_day),
    )


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _end_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time(23, 59, 59, 999000), tzinfo=value.tzinfo)


def subscription_end_date(start: datetime, period: str) -> datetime:
    """Last instant covered by a subscription that starts at ``start``."""
    if period == "day":
        end = start
    elif period == "week":
        end = start + timedelta(days=6)
    elif period == "15days":
        end = start + timedelta(days=14)
    elif period == "month":
        end = _add_months(start, 1) - timedelta(days=1)
    elif period == "3months":
        end = _add_months(start, 3) - timedelta(days=1)
    elif period == "6months":
        end = _add_months(start, 6) - timedelta(days=1)
    elif period == "year":
        end = _add_months(start, 12) - timedelta(days=1)
    else:
        end = start + timedelta(days=29)
    return _end_of_day(end)


def overlap_days(start: date, end: date, window_start: date, window_end: date) -> int:
    """Inclusive count of days shared by two date ranges."""
    lo = max(start, window_start)
    hi = min(end, window_end)
    if hi < lo:
        return 0
    return (hi - lo).days + 1
