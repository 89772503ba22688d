"""
Time helpers.
Timestamps are stored as naive UTC; day boundaries for scheduling are UTC days.
"""
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
import pytz
from ..config import settings


def to_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(pytz.UTC).replace(tzinfo=None)
    return dt


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """[start, end) of a UTC day as naive datetimes."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


def day_start_local(day: date, hhmm: Optional[str] = None, timezone_str: Optional[str] = None) -> datetime:
    """
    The start of the working day as an aware datetime in the given timezone.

    Args:
        day: Calendar date
        hhmm: Day start, e.g. "08:00" (default from settings)
        timezone_str: IANA timezone (default from settings)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    naive = datetime.combine(day, parse_hhmm(hhmm or settings.route_day_start))
    # localize() applies the correct DST offset for that date
    return tz.localize(naive)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    tz = pytz.timezone(timezone_str or settings.tz_default)
    if utc_datetime.tzinfo is None:
        utc_datetime = pytz.UTC.localize(utc_datetime)
    return utc_datetime.astimezone(tz)
