"""
Calendar arithmetic for announcement lifetimes.

All instants are naive UTC, matching how documents are stored.
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from bulletin.models.announcement import DurationUnit

DEFAULT_LIFETIME = timedelta(days=7)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by whole months, clamping to the last day of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def compute_expiry(value: int, unit: str, now: Optional[datetime] = None) -> datetime:
    """Return now + duration(value, unit); unknown units fall back to 7 days."""
    now = now or datetime.utcnow()
    if unit == DurationUnit.HOURS.value:
        return now + timedelta(hours=value)
    if unit == DurationUnit.DAYS.value:
        return now + timedelta(days=value)
    if unit == DurationUnit.WEEKS.value:
        return now + timedelta(weeks=value)
    if unit == DurationUnit.MONTHS.value:
        return add_months(now, value)
    return now + DEFAULT_LIFETIME


def to_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        return moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


def parse_instant(value: Union[datetime, str, None]) -> Optional[datetime]:
    """Parse a client-supplied instant; None when missing or unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        return None
