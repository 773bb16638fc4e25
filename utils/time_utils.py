"""
utils/time_utils.py

Purpose: Time helpers

- Day ranges for date filters
- Delivery date calculation
- Timestamp utilities
"""

from datetime import datetime, timedelta, date
from typing import Optional, Tuple, Union


def parse_date(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Parses an ISO date or datetime string.

    Returns:
        Naive UTC datetime, or None if the value is empty or invalid
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
    return parsed


def day_range(value: Union[str, date, datetime]) -> Optional[Tuple[datetime, datetime]]:
    """
    Start and end of the day containing value.

    Returns:
        (00:00:00.000, 23:59:59.999) or None if value is invalid
    """
    day = parse_date(value)
    if day is None:
        return None
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


def end_of_day(value: Union[str, date, datetime]) -> Optional[datetime]:
    bounds = day_range(value)
    return bounds[1] if bounds else None


def add_days(dt: datetime, days: int) -> datetime:
    return dt + timedelta(days=days)


def format_timestamp(dt: Optional[datetime], format_str: str = "%Y-%m-%d %H:%M:%S") -> str:
    """
    Formats a datetime object to string.
    """
    if not dt:
        return "N/A"
    return dt.strftime(format_str)


def epoch_millis(dt: Optional[datetime] = None) -> int:
    dt = dt or datetime.utcnow()
    return int((dt - datetime(1970, 1, 1)).total_seconds() * 1000)
