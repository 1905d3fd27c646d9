"""Standardized API response helpers.

List endpoints return a consistent envelope:
    {"items": [...], "total": <int>}

Paginated endpoints additionally include:
    {"items": [...], "total": <int>, "page": <int>, "limit": <int>, "pages": <int>}
"""

import math
from typing import Optional


def list_response(
    items: list,
    total: Optional[int] = None,
) -> dict:
    """Wrap a list in the standard envelope.

    Args:
        items: The list of serialized items.
        total: Total count (defaults to len(items) when the full list is returned).
    """
    return {
        "items": items,
        "total": total if total is not None else len(items),
    }


def paginated_response(
    items: list,
    total: int,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Wrap one page of a list in the standard envelope.

    Args:
        items: The page of serialized items.
        total: Total count across all pages.
        page: 1-based page number requested.
        limit: Page size requested.
    """
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }
