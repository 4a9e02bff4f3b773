import math
from typing import Any, Callable, Dict, Iterable, Optional

from homejiak.exceptions import ValidationError
from homejiak.utils.validation import normalize_pagination


def paginate(query, page: Optional[int] = None, limit: Optional[int] = None,
             sort_by: Optional[str] = None, sort_order: Optional[str] = None,
             allowed_sort: Optional[Dict[str, Any]] = None,
             serializer: Optional[Callable] = None) -> Dict[str, Any]:
    """Apply ordering, offset and limit to a SQLAlchemy query.

    Args:
        query: SQLAlchemy query
        page: Page number, 1-based
        limit: Page size
        sort_by: Name of a sort field; must be a key of ``allowed_sort``
        sort_order: ``asc`` or ``desc``
        allowed_sort: Mapping of sort field name to column
        serializer: Optional callable applied to every row

    Returns:
        Dictionary with ``items`` and ``pagination`` (page, limit, total, total_pages)
    """
    page, limit, sort_order = normalize_pagination(page, limit, sort_order)

    if sort_by:
        if not allowed_sort or sort_by not in allowed_sort:
            raise ValidationError(f"Cannot sort by '{sort_by}'")
        column = allowed_sort[sort_by]
        query = query.order_by(column.asc() if sort_order == 'asc' else column.desc())

    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()

    return {
        'items': [serializer(row) for row in rows] if serializer else rows,
        'pagination': page_info(page, limit, total),
    }


def page_info(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'total_pages': math.ceil(total / limit) if limit else 0,
    }


def paginate_list(items: Iterable, page: Optional[int] = None, limit: Optional[int] = None) -> Dict[str, Any]:
    """Paginate an in-memory sequence."""
    page, limit, _ = normalize_pagination(page, limit)
    items = list(items)
    start = (page - 1) * limit
    return {
        'items': items[start:start + limit],
        'pagination': page_info(page, limit, len(items)),
    }
