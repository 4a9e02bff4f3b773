import re
import secrets
import string
import unicodedata
from typing import Callable

MAX_SLUG_LENGTH = 60
FALLBACK_SLUG = 'merchant'
MAX_NUMBERED_ATTEMPTS = 50


def slugify(text: str) -> str:
    """Turn a business name into a URL slug.

    Accented characters are folded to ASCII, anything that is not a letter or
    digit becomes a dash, and the result is capped at 60 characters.

    Args:
        text: Source text

    Returns:
        Slug, or ``merchant`` when nothing usable remains
    """
    normalized = unicodedata.normalize('NFKD', text or '')
    ascii_text = ''.join(ch for ch in normalized if not unicodedata.combining(ch))
    slug = re.sub(r'[^a-z0-9]+', '-', ascii_text.lower()).strip('-')
    slug = slug[:MAX_SLUG_LENGTH].strip('-')
    return slug or FALLBACK_SLUG


def _random_suffix(length: int = 4) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


def ensure_unique_slug(base: str, exists: Callable[[str], bool]) -> str:
    """Find a free slug derived from ``base``.

    Tries ``base``, then ``base-2`` up to ``base-50``, then falls back to a
    random four character suffix.

    Args:
        base: Text or slug to start from
        exists: Callback returning True when a slug is taken

    Returns:
        Unused slug
    """
    slug = slugify(base)
    if not exists(slug):
        return slug

    for n in range(2, MAX_NUMBERED_ATTEMPTS + 1):
        suffix = f"-{n}"
        candidate = f"{slug[:MAX_SLUG_LENGTH - len(suffix)]}{suffix}"
        if not exists(candidate):
            return candidate

    while True:
        suffix = f"-{_random_suffix()}"
        candidate = f"{slug[:MAX_SLUG_LENGTH - len(suffix)]}{suffix}"
        if not exists(candidate):
            return candidate
