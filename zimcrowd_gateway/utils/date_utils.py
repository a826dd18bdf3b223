"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips drop tzinfo) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_past(deadline: datetime, now: datetime | None = None) -> bool:
    return ensure_utc(deadline) < (now or utcnow())


def add_months(from_date: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the month's last day"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def add_days(from_date: date, days: int) -> date:
    return from_date + timedelta(days=days)
