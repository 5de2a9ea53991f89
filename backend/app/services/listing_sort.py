from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List

from backend.app.services.query_models import SortField, SortOrder, parse_sort_field, parse_sort_order
from backend.app.services.records import QUALITY_TIER_RANK, VehicleRecord

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SORT_LABELS = {
    SortField.PRIORITY: "Priority Score",
    SortField.QUALITY_TIER: "Quality Tier",
    SortField.PRICE: "Price",
    SortField.MILEAGE: "Mileage",
    SortField.YEAR: "Year",
    SortField.MAKE: "Make",
    SortField.MODEL: "Model",
    SortField.DATE: "Date Added",
}


def _created(record: VehicleRecord) -> datetime:
    value = record.created_at
    if value is None:
        return _EPOCH
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


_SORT_KEYS: Dict[SortField, Callable[[VehicleRecord], Any]] = {
    SortField.PRIORITY: lambda r: r.priority_score,
    SortField.QUALITY_TIER: lambda r: (QUALITY_TIER_RANK[r.quality_tier], r.priority_score),
    SortField.PRICE: lambda r: r.price,
    SortField.MILEAGE: lambda r: r.mileage,
    SortField.YEAR: lambda r: r.year,
    SortField.MAKE: lambda r: r.make.casefold(),
    SortField.MODEL: lambda r: r.model.casefold(),
    SortField.DATE: _created,
}


def sort_records(
    records: Iterable[VehicleRecord],
    field: str | SortField = SortField.PRIORITY,
    order: str | SortOrder = SortOrder.DESC,
) -> List[VehicleRecord]:
    """Stable sort; records with equal keys keep their input order in both directions."""
    sort_field = parse_sort_field(field)
    sort_order = parse_sort_order(order)
    return sorted(records, key=_SORT_KEYS[sort_field], reverse=sort_order is SortOrder.DESC)


def toggle_order(order: str | SortOrder) -> SortOrder:
    return SortOrder.DESC if parse_sort_order(order) is SortOrder.ASC else SortOrder.ASC


def sort_label(field: str | SortField) -> str:
    return SORT_LABELS[parse_sort_field(field)]
