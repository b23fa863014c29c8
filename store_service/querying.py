"""Sorting and pagination helpers for list endpoints."""
import math
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Query

from store_service.errors import ApiError


def apply_sort(
    query: Query,
    sort: Optional[str],
    columns: Dict[str, Any],
    default: str = "-created_at"
) -> Query:
    """
    Order ``query`` by a comma separated field list, ``-`` prefix meaning descending.

    Args:
        query: Query to order
        sort: e.g. ``"-price,name"``; falls back to ``default`` when empty
        columns: Whitelist of sortable field names to columns

    Raises:
        ApiError: 400 for a field outside the whitelist
    """
    for field in (sort or default).split(","):
        field = field.strip()
        if not field:
            continue
        name = field.lstrip("-")
        column = columns.get(name)
        if column is None:
            raise ApiError(f"Invalid sort field: {name}", 400)
        query = query.order_by(column.desc() if field.startswith("-") else column.asc())
    return query


def paginate(query: Query, page: int, limit: int) -> Tuple[List[Any], int, int]:
    """Returns (items on ``page``, total rows, total pages)."""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, total, math.ceil(total / limit)
