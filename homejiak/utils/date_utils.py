# homejiak/utils/date_utils.py
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple, Union
from zoneinfo import ZoneInfo

SINGAPORE_TZ = ZoneInfo('Asia/Singapore')


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention for all columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_singapore(value: datetime) -> datetime:
    """Convert a stored (naive UTC) or aware datetime to Singapore local time.

    Args:
        value: Datetime to convert

    Returns:
        Aware datetime in Asia/Singapore
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(SINGAPORE_TZ)


def to_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_date(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """Parse an ISO date or datetime string into a naive UTC datetime.

    Args:
        value: ISO string (``2024-05-01`` or ``2024-05-01T10:00:00+08:00``),
            date, datetime or None

    Returns:
        Naive UTC datetime or None

    Raises:
        ValueError if the string is not ISO formatted
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return to_utc_naive(datetime.fromisoformat(text))
    except ValueError:
        raise ValueError(f"Invalid date: {value}. Expected ISO format (YYYY-MM-DD)")


def date_range(start_date: date, end_date: date) -> List[date]:
    """List every date from start to end inclusive.

    Args:
        start_date: First date
        end_date: Last date

    Returns:
        List of dates
    """
    if end_date < start_date:
        return []
    days = (end_date - start_date).days
    return [start_date + timedelta(days=i) for i in range(days + 1)]


def singapore_day_bounds(day: Optional[date] = None) -> Tuple[datetime, datetime]:
    """Start and end of a Singapore calendar day as naive UTC datetimes.

    Args:
        day: Singapore local date (defaults to today in Singapore)

    Returns:
        Tuple of (start, end) with end exclusive
    """
    if day is None:
        day = to_singapore(utcnow()).date()
    start_local = datetime(day.year, day.month, day.day, tzinfo=SINGAPORE_TZ)
    end_local = start_local + timedelta(days=1)
    return to_utc_naive(start_local), to_utc_naive(end_local)


def date_bounds(date_from, date_to) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Parse a from/to filter pair into naive UTC bounds, end exclusive.

    A bare date as the upper bound covers the whole day.
    """
    start = parse_date(date_from)
    end = parse_date(date_to)
    if end is not None:
        bare_string = isinstance(date_to, str) and len(date_to.strip()) == 10
        bare_date = isinstance(date_to, date) and not isinstance(date_to, datetime)
        if bare_string or bare_date:
            end = end + timedelta(days=1)
    return start, end
