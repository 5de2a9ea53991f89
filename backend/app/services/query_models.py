from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from backend.app.services.records import MileageRating, QualityTier

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
PAGE_SIZE_OPTIONS = (10, 25, 50, 100)
MAX_VISIBLE_PAGES = 5


class QueryValidationError(ValueError):
    """Raised for a query the read services refuse to guess at."""


class SortField(str, Enum):
    PRIORITY = "priority"
    QUALITY_TIER = "quality_tier"
    PRICE = "price"
    MILEAGE = "mileage"
    YEAR = "year"
    MAKE = "make"
    MODEL = "model"
    DATE = "date"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class ListingQuery:
    """Caller-supplied read query over the curated set. Unset fields don't filter."""

    makes: List[str] = field(default_factory=list)
    models: List[str] = field(default_factory=list)
    price_min: Optional[int] = None
    price_max: Optional[int] = None
    mileage_min: Optional[int] = None
    mileage_max: Optional[int] = None
    year_min: Optional[int] = None
    year_max: Optional[int] = None
    mileage_ratings: List[MileageRating] = field(default_factory=list)
    quality_tiers: List[QualityTier] = field(default_factory=list)
    search: Optional[str] = None
    sort_field: SortField = SortField.PRIORITY
    sort_order: SortOrder = SortOrder.DESC
    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE


def parse_sort_field(value: str | SortField) -> SortField:
    try:
        return SortField(value)
    except ValueError:
        allowed = ", ".join(f.value for f in SortField)
        raise QueryValidationError(f"Unknown sort field '{value}' (expected one of: {allowed})") from None


def parse_sort_order(value: str | SortOrder) -> SortOrder:
    try:
        return SortOrder(str(value.value if isinstance(value, SortOrder) else value).lower())
    except ValueError:
        raise QueryValidationError(f"Unknown sort order '{value}' (expected asc or desc)") from None


def parse_mileage_rating(value: str | MileageRating) -> MileageRating:
    try:
        return MileageRating(value)
    except ValueError:
        raise QueryValidationError(f"Unknown mileage rating '{value}'") from None


def parse_quality_tier(value: str | QualityTier) -> QualityTier:
    try:
        return QualityTier(value)
    except ValueError:
        raise QueryValidationError(f"Unknown quality tier '{value}'") from None
