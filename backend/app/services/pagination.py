from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Generic, List, Sequence, TypeVar, Union

from backend.app.services.query_models import MAX_VISIBLE_PAGES, QueryValidationError

T = TypeVar("T")

ELLIPSIS = "ellipsis"


@dataclass(frozen=True)
class PageInfo:
    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool
    start_index: int
    end_index: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Page(Generic[T]):
    items: List[T]
    pagination: PageInfo


def _validate(page: int, page_size: int) -> None:
    if isinstance(page, bool) or not isinstance(page, int) or page <= 0:
        raise QueryValidationError(f"page must be a positive integer, got {page!r}")
    if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size <= 0:
        raise QueryValidationError(f"page_size must be a positive integer, got {page_size!r}")


def paginate(items: Sequence[T], page: int, page_size: int) -> Page[T]:
    """Slice ``items`` to a 1-indexed page.

    A page past the end is not an error: it comes back empty with the true
    totals, so a client can tell "no such page" from "no results".
    """
    _validate(page, page_size)
    total_items = len(items)
    total_pages = math.ceil(total_items / page_size)
    start_index = min((page - 1) * page_size, total_items)
    end_index = min(start_index + page_size, total_items)
    return Page(
        items=list(items[start_index:end_index]),
        pagination=PageInfo(
            current_page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
            has_next_page=page * page_size < total_items,
            has_previous_page=page > 1,
            start_index=start_index,
            end_index=end_index,
        ),
    )


def page_numbers(current_page: int, total_pages: int, max_visible: int = MAX_VISIBLE_PAGES) -> List[Union[int, str]]:
    """Page links for pagination controls, with ``"ellipsis"`` marking gaps.

    The first and last pages are always present; the window around
    ``current_page`` shifts so the control keeps a constant width near either end.
    """
    if total_pages <= max_visible:
        return list(range(1, total_pages + 1))

    half = max_visible // 2
    start = max(2, current_page - half)
    end = min(total_pages - 1, current_page + half)
    if current_page <= half + 1:
        end = min(total_pages - 1, max_visible - 1)
    if current_page >= total_pages - half:
        start = max(2, total_pages - max_visible + 2)

    pages: List[Union[int, str]] = [1]
    if start > 2:
        pages.append(ELLIPSIS)
    pages.extend(range(start, end + 1))
    if end < total_pages - 1:
        pages.append(ELLIPSIS)
    pages.append(total_pages)
    return pages
