from __future__ import annotations

from typing import Iterable

from backend.app.services.listing_filter import apply_filters
from backend.app.services.listing_sort import sort_records
from backend.app.services.pagination import Page, paginate
from backend.app.services.query_models import ListingQuery
from backend.app.services.records import VehicleRecord


def filter_sort_paginate(records: Iterable[VehicleRecord], query: ListingQuery) -> Page[VehicleRecord]:
    """Filter, then stable-sort, then slice one page out of the curated set."""
    filtered = apply_filters(records, query)
    ordered = sort_records(filtered, query.sort_field, query.sort_order)
    return paginate(ordered, query.page, query.page_size)
