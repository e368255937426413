"""
Sorting and pagination for list endpoints.

Firestore queries here only filter; ordering and paging are applied in memory
so that filters on several fields do not need composite indexes.
"""

from math import ceil
from typing import Any, List, Sequence, Tuple

from fastapi import HTTPException, status

from marketplace.core.config import get_settings
from marketplace.models.schemas import Pagination


def sort_documents(items: Sequence[Any], sort_by: str, sort_order: str, allowed_fields: Sequence[str]) -> List[Any]:
    if sort_by not in allowed_fields:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid sort field. Allowed: {', '.join(allowed_fields)}",
        )
    if sort_order not in ("asc", "desc"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sort order must be 'asc' or 'desc'")

    with_value = [item for item in items if getattr(item, sort_by, None) is not None]
    without_value = [item for item in items if getattr(item, sort_by, None) is None]
    with_value.sort(key=lambda item: getattr(item, sort_by), reverse=(sort_order == "desc"))
    return with_value + without_value


def paginate(items: Sequence[Any], page: int, limit: int) -> Tuple[List[Any], Pagination]:
    settings = get_settings()
    page = max(page, 1)
    limit = min(max(limit, 1), settings.max_page_size)

    total_items = len(items)
    total_pages = ceil(total_items / limit) if total_items else 0
    start = (page - 1) * limit
    page_items = list(items[start:start + limit])

    return page_items, Pagination(
        current_page=page,
        total_pages=total_pages,
        total_items=total_items,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )
