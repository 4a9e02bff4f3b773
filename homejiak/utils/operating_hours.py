"""
Opening-hours evaluation for merchant storefronts.

Schedules are stored as JSON keyed by lowercase day name; each day carries an
``isOpen`` flag and an optional list of ``{"open": "HH:MM", "close": "HH:MM"}``
slots. All evaluation happens in Singapore local time.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from homejiak.utils.date_utils import SINGAPORE_TZ, to_singapore, utcnow
from homejiak.utils.validation import DAYS_OF_WEEK

MINUTES_PER_DAY = 24 * 60


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(':')
    return int(hours) * 60 + int(minutes)


def _slots(schedule: Dict) -> List[Dict]:
    slots = schedule.get('slots')
    if slots is None and schedule.get('open') and schedule.get('close'):
        # Single-range form {"isOpen", "open", "close"}
        slots = [{'open': schedule['open'], 'close': schedule['close']}]
    return slots or []


def _local(now: Optional[datetime]) -> datetime:
    if now is None:
        now = utcnow()
    return to_singapore(now)


def is_open(hours: Optional[Dict], now: Optional[datetime] = None) -> bool:
    """Check whether a merchant is open at the given moment.

    A day marked open with no slots counts as open all day. Slots whose close
    time is earlier than the open time run past midnight, so the previous
    day's overnight slot is honoured in the early hours.

    Args:
        hours: Operating hours mapping
        now: Moment to check (naive UTC or aware); defaults to now

    Returns:
        True if open
    """
    if not hours:
        return False

    local = _local(now)
    current = local.hour * 60 + local.minute
    today = DAYS_OF_WEEK[local.weekday()]
    yesterday = DAYS_OF_WEEK[(local.weekday() - 1) % 7]

    schedule = hours.get(today) or {}
    if schedule.get('isOpen'):
        slots = _slots(schedule)
        if not slots:
            return True
        for slot in slots:
            open_at, close_at = _minutes(slot['open']), _minutes(slot['close'])
            if close_at < open_at:
                if current >= open_at:
                    return True
            elif open_at <= current < close_at:
                return True

    previous = hours.get(yesterday) or {}
    if previous.get('isOpen'):
        for slot in _slots(previous):
            open_at, close_at = _minutes(slot['open']), _minutes(slot['close'])
            if close_at < open_at and current < close_at:
                return True

    return False


def next_opening_time(hours: Optional[Dict], now: Optional[datetime] = None) -> Optional[datetime]:
    """Find the next slot opening within the coming seven days.

    Args:
        hours: Operating hours mapping
        now: Reference moment; defaults to now

    Returns:
        Aware Singapore datetime of the next opening, or None
    """
    if not hours:
        return None

    local = _local(now)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)

    for days_ahead in range(7):
        day_start = midnight + timedelta(days=days_ahead)
        schedule = hours.get(DAYS_OF_WEEK[day_start.weekday()]) or {}
        if not schedule.get('isOpen'):
            continue

        for slot in sorted(_slots(schedule), key=lambda s: _minutes(s['open'])):
            hour, minute = (int(part) for part in slot['open'].split(':'))
            opening = datetime(day_start.year, day_start.month, day_start.day,
                               hour, minute, tzinfo=SINGAPORE_TZ)
            if opening > local:
                return opening

    return None


def format_operating_hours(hours: Optional[Dict]) -> List[str]:
    """Render one display line per day, Monday first.

    Returns:
        Lines such as ``Monday: 09:00 - 21:00``, ``Tuesday: Closed`` or
        ``Sunday: Open 24 hours``
    """
    hours = hours or {}
    lines = []
    for day in DAYS_OF_WEEK:
        schedule = hours.get(day) or {}
        name = day.capitalize()
        if not schedule.get('isOpen'):
            lines.append(f"{name}: Closed")
            continue
        slots = _slots(schedule)
        if not slots:
            lines.append(f"{name}: Open 24 hours")
            continue
        ranges = ', '.join(f"{slot['open']} - {slot['close']}" for slot in slots)
        lines.append(f"{name}: {ranges}")
    return lines
