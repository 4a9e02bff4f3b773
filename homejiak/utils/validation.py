import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Tuple

from homejiak.exceptions import ValidationError

SINGAPORE_PHONE_PATTERN = re.compile(r'^(\+65)?[689]\d{7}$')
POSTAL_CODE_PATTERN = re.compile(r'^\d{6}$')
SLUG_PATTERN = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')
TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')

DAYS_OF_WEEK = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

CENT = Decimal('0.01')


def normalize_phone(phone: str) -> str:
    """Strip spaces and dashes from a phone number."""
    return re.sub(r'[\s-]', '', phone or '')


def is_valid_phone(phone: str) -> bool:
    """Check a Singapore phone number (optionally +65 prefixed)."""
    return bool(SINGAPORE_PHONE_PATTERN.match(normalize_phone(phone)))


def is_valid_postal_code(postal_code: str) -> bool:
    return bool(POSTAL_CODE_PATTERN.match(postal_code or ''))


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and len(slug) <= 60 and bool(SLUG_PATTERN.match(slug))


def money(value) -> Decimal:
    """Round a numeric value to cents, half-up.

    Args:
        value: int, float, str or Decimal

    Returns:
        Decimal with two decimal places
    """
    if value is None:
        return Decimal('0.00')
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_pagination(page: Optional[int] = None, limit: Optional[int] = None,
                         sort_order: Optional[str] = None) -> Tuple[int, int, str]:
    """Validate pagination inputs and apply defaults.

    Args:
        page: Page number, 1-based
        limit: Page size between 1 and 100
        sort_order: ``asc`` or ``desc``

    Returns:
        Tuple of (page, limit, sort_order)

    Raises:
        ValidationError if any value is out of range
    """
    page = 1 if page is None else int(page)
    limit = DEFAULT_PAGE_SIZE if limit is None else int(limit)
    sort_order = (sort_order or 'desc').lower()

    if page < 1:
        raise ValidationError("Page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
    if sort_order not in ('asc', 'desc'):
        raise ValidationError("Sort order must be 'asc' or 'desc'")

    return page, limit, sort_order


def validate_operating_hours(hours) -> Dict[str, str]:
    """Validate an operating-hours mapping.

    Accepts the slot form ``{"monday": {"isOpen": true, "slots": [{"open": "09:00",
    "close": "21:00"}]}}`` and the single-range form ``{"isOpen", "open", "close"}``.

    Args:
        hours: Mapping of day name to schedule

    Returns:
        Dictionary with validation errors
    """
    errors = {}

    if not isinstance(hours, dict):
        return {'operating_hours': 'Operating hours must be an object keyed by day'}

    for day in DAYS_OF_WEEK:
        schedule = hours.get(day)
        if schedule is None:
            errors[day] = 'Schedule is required'
            continue
        if not isinstance(schedule, dict) or not isinstance(schedule.get('isOpen'), bool):
            errors[day] = 'isOpen flag is required'
            continue

        slots = schedule.get('slots')
        if slots is None and ('open' in schedule or 'close' in schedule):
            slots = [{'open': schedule.get('open'), 'close': schedule.get('close')}]

        for slot in slots or []:
            if not isinstance(slot, dict):
                errors[day] = 'Invalid time slot'
                break
            if not TIME_PATTERN.match(str(slot.get('open', ''))) or \
                    not TIME_PATTERN.match(str(slot.get('close', ''))):
                errors[day] = 'Invalid time format (HH:MM)'
                break

    unknown = set(hours) - set(DAYS_OF_WEEK)
    if unknown:
        errors['operating_hours'] = f"Unknown days: {', '.join(sorted(unknown))}"

    return errors


def require(errors: Dict[str, str], message: str = "Validation failed"):
    """Raise a ValidationError carrying the error map when it is not empty."""
    if errors:
        raise ValidationError(message, details=errors)
