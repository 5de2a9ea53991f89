from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from backend.app.api.deps import get_store
from backend.app.services.curated_store import SqlAlchemyCuratedStore
from backend.app.services.listing_filter import active_filter_count, tier_counts, unique_values
from backend.app.services.listing_query import filter_sort_paginate
from backend.app.services.pagination import page_numbers
from backend.app.services.query_models import (
    DEFAULT_PAGE_SIZE,
    ListingQuery,
    QueryValidationError,
    parse_mileage_rating,
    parse_quality_tier,
    parse_sort_field,
    parse_sort_order,
)

MAX_PAGE_SIZE = 100

router = APIRouter()


class ReviewUpdateIn(BaseModel):
    reviewed_by_user: Optional[bool] = None
    user_rating: Optional[int] = Field(default=None, ge=1, le=5)
    user_notes: Optional[str] = None


def _review_payload(record) -> dict:
    return {
        "vin": record.vin,
        "reviewed_by_user": record.reviewed_by_user,
        "user_rating": record.user_rating,
        "user_notes": record.user_notes,
    }


@router.get("")
async def list_listings(
    make: Optional[List[str]] = Query(default=None),
    model: Optional[List[str]] = Query(default=None),
    price_min: Optional[int] = None,
    price_max: Optional[int] = None,
    mileage_min: Optional[int] = None,
    mileage_max: Optional[int] = None,
    year_min: Optional[int] = None,
    year_max: Optional[int] = None,
    mileage_rating: Optional[List[str]] = Query(default=None),
    quality_tier: Optional[List[str]] = Query(default=None),
    search: Optional[str] = None,
    sort: str = "priority",
    order: str = "desc",
    page: int = 1,
    size: int = DEFAULT_PAGE_SIZE,
    store: SqlAlchemyCuratedStore = Depends(get_store),
):
    if size > MAX_PAGE_SIZE:
        raise HTTPException(status_code=400, detail=f"size must be <= {MAX_PAGE_SIZE}")
    try:
        query = ListingQuery(
            makes=list(make or []),
            models=list(model or []),
            price_min=price_min,
            price_max=price_max,
            mileage_min=mileage_min,
            mileage_max=mileage_max,
            year_min=year_min,
            year_max=year_max,
            mileage_ratings=[parse_mileage_rating(value) for value in mileage_rating or []],
            quality_tiers=[parse_quality_tier(value) for value in quality_tier or []],
            search=search,
            sort_field=parse_sort_field(sort),
            sort_order=parse_sort_order(order),
            page=page,
            page_size=size,
        )
        result = filter_sort_paginate(store.query(), query)
    except QueryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    info = result.pagination
    return {
        "items": [record.to_dict() for record in result.items],
        "pagination": info.to_dict(),
        "page_numbers": page_numbers(info.current_page, info.total_pages),
        "active_filters": active_filter_count(query),
        "sort": {"field": query.sort_field.value, "order": query.sort_order.value},
    }


@router.get("/filters")
async def filter_options(store: SqlAlchemyCuratedStore = Depends(get_store)):
    records = store.query()
    return {**unique_values(records), "quality_tiers": tier_counts(records), "total": len(records)}


@router.get("/{vin}")
async def listing_detail(vin: str, store: SqlAlchemyCuratedStore = Depends(get_store)):
    record = store.get_by_vin(vin)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Vehicle with VIN {vin} not found")
    return record.to_dict()


@router.get("/{vin}/review")
async def get_review(vin: str, store: SqlAlchemyCuratedStore = Depends(get_store)):
    record = store.get_by_vin(vin)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Vehicle with VIN {vin} not found")
    return _review_payload(record)


@router.patch("/{vin}/review")
async def update_review(vin: str, body: ReviewUpdateIn, store: SqlAlchemyCuratedStore = Depends(get_store)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="At least one field must be provided")
    if "reviewed_by_user" in changes and changes["reviewed_by_user"] is None:
        raise HTTPException(status_code=400, detail="reviewed_by_user cannot be null")

    record = store.update_review(vin, changes)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Vehicle with VIN {vin} not found")
    return _review_payload(record)
