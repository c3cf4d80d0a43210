"""Display windows over a filtered record list."""
from __future__ import annotations

import math
from typing import Sequence, TypeVar

from .models import ViewScope

T = TypeVar("T")

PAGE_SIZE = 15
RECENT_LIMIT = 10


def paginate(
    items: Sequence[T],
    view_scope: ViewScope,
    page: int = 1,
    page_size: int = PAGE_SIZE,
    recent_limit: int = RECENT_LIMIT,
) -> list[T]:
    """Return the slice of ``items`` to display.

    ``"monthly"`` is the "most recent N" view: it always returns the head of
    the list and ignores ``page``.  ``"all"`` returns page ``page`` (1-based).
    Clamping ``page`` into range is the caller's job.
    """

    if view_scope == "monthly":
        return list(items[:recent_limit])
    offset = (page - 1) * page_size
    if offset < 0:
        return []
    return list(items[offset : offset + page_size])


def total_pages(item_count: int, page_size: int = PAGE_SIZE) -> int:
    if page_size <= 0:
        return 0
    return math.ceil(item_count / page_size)


def clamp_page(page: int, pages: int) -> int:
    return min(max(1, page), max(1, pages))


__all__ = ["PAGE_SIZE", "RECENT_LIMIT", "clamp_page", "paginate", "total_pages"]
