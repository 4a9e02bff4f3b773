"""
PayNow (SGQR / EMVCo merchant-presented) payload builder.

The payload is a flat string of ``<id><2-digit length><value>`` fields, with
nested templates for the PayNow account (tag 26) and the bill reference
(tag 62), terminated by a CRC16-CCITT checksum (tag 63).
"""
import re
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from homejiak.utils.date_utils import to_singapore, utcnow
from homejiak.utils.validation import money

PAYNOW_PHONE_PATTERN = re.compile(r'^[89]\d{7}$')
UEN_PATTERNS = (
    re.compile(r'^[0-9]{9}[A-Z]$'),          # business, 9 digits + letter
    re.compile(r'^[0-9]{10}[A-Z]$'),         # local company, 10 digits + letter
    re.compile(r'^[TSR][0-9]{2}[A-Z]{2}[0-9]{4}[A-Z]$'),  # other entities
)

PROXY_MOBILE = '0'
PROXY_UEN = '2'
CURRENCY_SGD = '702'
MAX_MERCHANT_NAME = 25
DEFAULT_EXPIRY_DAYS = 7

Field = Tuple[str, Union[str, List[Tuple[str, str]]]]


def is_valid_singapore_phone(phone: str) -> bool:
    """Check an 8-digit Singapore mobile number starting with 8 or 9."""
    return bool(PAYNOW_PHONE_PATTERN.match(phone or ''))


def is_valid_uen(uen: str) -> bool:
    """Check a Singapore Unique Entity Number."""
    return any(pattern.match(uen or '') for pattern in UEN_PATTERNS)


def crc16_ccitt(data: str) -> str:
    """Compute CRC16-CCITT (poly 0x1021, init 0xFFFF) as 4 uppercase hex digits.

    Raises:
        ValueError if the data holds characters outside Latin-1
    """
    crc = 0xFFFF
    for char in data:
        code = ord(char)
        if code > 255:
            raise ValueError("Character out of range")
        crc ^= code << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def _encode(field_id: str, value: str) -> str:
    return f"{field_id}{len(value):02d}{value}"


def _encode_fields(fields: List[Field]) -> str:
    parts = []
    for field_id, value in fields:
        if isinstance(value, list):
            value = ''.join(_encode(sub_id, sub_value) for sub_id, sub_value in value)
        parts.append(_encode(field_id, value))
    return ''.join(parts)


def format_expiry_date(days_from_now: int = DEFAULT_EXPIRY_DAYS, now: Optional[datetime] = None) -> str:
    """Expiry date as YYYYMMDD in Singapore time."""
    local = to_singapore(now or utcnow()) + timedelta(days=days_from_now)
    return local.strftime('%Y%m%d')


def build_paynow_payload(proxy: str, amount: Union[Decimal, float, int] = 0,
                         reference: Optional[str] = None, merchant_name: Optional[str] = None,
                         expiry_date: Optional[str] = None) -> str:
    """Build the SGQR string a PayNow app scans.

    Args:
        proxy: 8-digit mobile number (prefixed with +65 in the payload) or UEN
        amount: Amount in SGD; zero produces a static, editable-amount code
        reference: Bill reference shown to the payer (tag 62.01)
        merchant_name: Merchant display name, truncated to 25 characters
        expiry_date: YYYYMMDD; defaults to seven days from today

    Returns:
        Payload string including the CRC
    """
    proxy = (proxy or '').strip().replace(' ', '')
    is_phone = is_valid_singapore_phone(proxy)
    identifier = f"+65{proxy}" if is_phone else proxy
    amount = money(amount)
    has_amount = amount > 0

    fields: List[Field] = [
        ('00', '01'),
        ('01', '12' if has_amount else '11'),
        ('26', [
            ('00', 'SG.PAYNOW'),
            ('01', PROXY_MOBILE if is_phone else PROXY_UEN),
            ('02', identifier),
            ('03', '0' if has_amount else '1'),
            ('04', expiry_date or format_expiry_date()),
        ]),
        ('52', '0000'),
        ('53', CURRENCY_SGD),
    ]

    if has_amount:
        fields.append(('54', f"{amount:.2f}"))

    fields.extend([
        ('58', 'SG'),
        ('59', (merchant_name or 'MERCHANT')[:MAX_MERCHANT_NAME]),
        ('60', 'Singapore'),
    ])

    if reference:
        fields.append(('62', [('01', reference)]))

    payload = _encode_fields(fields) + '6304'
    return payload + crc16_ccitt(payload)
