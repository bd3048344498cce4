"""Page-number pagination shared by the list endpoints."""
from __future__ import annotations

from typing import Any, Callable, Dict, Tuple

from django.conf import settings
from django.db.models import QuerySet

from purchasing.exceptions import PurchaseOrderError


def page_bounds(
    page: Any,
    page_size: Any,
    size_setting: str = "PO_LIST_PAGE_SIZE",
    max_setting: str = "PO_LIST_MAX_PAGE_SIZE",
) -> Tuple[int, int]:
    """Parse ``page``/``page_size`` query values; the size is capped at the configured maximum."""
    default_size = getattr(settings, size_setting, 25)
    max_size = getattr(settings, max_setting, 200)
    try:
        page_no = int(page or 1)
        size = int(page_size or default_size)
    except (TypeError, ValueError):
        raise PurchaseOrderError("page and page_size must be integers.", code="invalid_page")
    if page_no < 1 or size < 1:
        raise PurchaseOrderError("page and page_size must be positive.", code="invalid_page")
    return page_no, min(size, max_size)


def paginate(
    queryset: QuerySet,
    serialize: Callable[[Any], Dict[str, Any]],
    page: Any = 1,
    page_size: Any = None,
    size_setting: str = "PO_LIST_PAGE_SIZE",
    max_setting: str = "PO_LIST_MAX_PAGE_SIZE",
) -> Dict[str, Any]:
    page_no, size = page_bounds(page, page_size, size_setting, max_setting)
    count = queryset.count()
    offset = (page_no - 1) * size
    return {
        "results": [serialize(obj) for obj in queryset[offset:offset + size]],
        "count": count,
        "page": page_no,
        "page_size": size,
    }
