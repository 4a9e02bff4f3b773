from .date_utils import utcnow, parse_date, date_range, to_singapore
from .validation import money, is_valid_phone, is_valid_postal_code, normalize_pagination
from .slug import slugify, ensure_unique_slug
from .operating_hours import is_open, next_opening_time, format_operating_hours
from .paynow import build_paynow_payload, is_valid_singapore_phone, is_valid_uen
from .pagination import paginate

__all__ = [
    'utcnow',
    'parse_date',
    'date_range',
    'to_singapore',
    'money',
    'is_valid_phone',
    'is_valid_postal_code',
    'normalize_pagination',
    'slugify',
    'ensure_unique_slug',
    'is_open',
    'next_opening_time',
    'format_operating_hours',
    'build_paynow_payload',
    'is_valid_singapore_phone',
    'is_valid_uen',
    'paginate'
]
