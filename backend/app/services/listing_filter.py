from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from backend.app.services.query_models import ListingQuery, QueryValidationError
from backend.app.services.records import MileageRating, QualityTier, VehicleRecord

_RANGES = (
    ("price_min", "price_max"),
    ("mileage_min", "mileage_max"),
    ("year_min", "year_max"),
)


def validate_filters(query: ListingQuery) -> None:
    for low_name, high_name in _RANGES:
        low = getattr(query, low_name)
        high = getattr(query, high_name)
        for name, value in ((low_name, low), (high_name, high)):
            if value is not None and value < 0:
                raise QueryValidationError(f"{name} must not be negative")
        if low is not None and high is not None and low > high:
            raise QueryValidationError(f"{low_name} ({low}) is greater than {high_name} ({high})")


def _in_range(value: int, low: Optional[int], high: Optional[int]) -> bool:
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def matches_search(record: VehicleRecord, search: Optional[str]) -> bool:
    """Case-insensitive substring match against VIN, make, model or year."""
    text = (search or "").strip().lower()
    if not text:
        return True
    haystacks = (record.vin, record.make, record.model, str(record.year))
    return any(text in (value or "").lower() for value in haystacks)


def matches(record: VehicleRecord, query: ListingQuery) -> bool:
    if query.makes and record.make not in query.makes:
        return False
    if query.models and record.model not in query.models:
        return False
    if not _in_range(record.price, query.price_min, query.price_max):
        return False
    if not _in_range(record.mileage, query.mileage_min, query.mileage_max):
        return False
    if not _in_range(record.year, query.year_min, query.year_max):
        return False
    if query.mileage_ratings and MileageRating(record.mileage_rating) not in query.mileage_ratings:
        return False
    if query.quality_tiers and record.quality_tier not in query.quality_tiers:
        return False
    return matches_search(record, query.search)


def apply_filters(records: Iterable[VehicleRecord], query: ListingQuery) -> List[VehicleRecord]:
    """Keep records satisfying every set criterion, in input order."""
    validate_filters(query)
    return [record for record in records if matches(record, query)]


def unique_values(records: Iterable[VehicleRecord]) -> Dict[str, List[Any]]:
    """Distinct makes and models (sorted) and years (newest first) for filter dropdowns."""
    records = list(records)
    return {
        "makes": sorted({record.make for record in records}),
        "models": sorted({record.model for record in records}),
        "years": sorted({record.year for record in records}, reverse=True),
    }


def active_filter_count(query: ListingQuery) -> int:
    count = 0
    if query.makes:
        count += 1
    if query.models:
        count += 1
    for low_name, high_name in _RANGES:
        count += getattr(query, low_name) is not None
        count += getattr(query, high_name) is not None
    if query.mileage_ratings:
        count += 1
    if query.quality_tiers:
        count += 1
    if query.search and query.search.strip():
        count += 1
    return count


def tier_counts(records: Iterable[VehicleRecord]) -> Dict[str, int]:
    counts = {tier.value: 0 for tier in QualityTier}
    for record in records:
        counts[record.quality_tier.value] += 1
    return counts
