from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, ContextManager, Dict, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.records import CONTENT_FIELDS, MileageRating, VehicleRecord, normalize_vin
from backend.app.services.run_summary import RunSummary

REVIEW_FIELDS = ("reviewed_by_user", "user_rating", "user_notes")


class StoreError(Exception):
    """Raised when the curated store cannot complete a read or write."""


class CuratedStore(Protocol):
    def get_by_vin(self, vin: str) -> Optional[VehicleRecord]: ...

    def upsert(self, record: VehicleRecord) -> VehicleRecord: ...

    def query(self, criteria: Optional[Dict[str, Any]] = None) -> List[VehicleRecord]: ...

    def insert_run_summary(self, summary: RunSummary) -> None: ...


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _to_record(row: models.CuratedListing) -> VehicleRecord:
    return VehicleRecord(
        vin=row.vin,
        make=row.make,
        model=row.model,
        year=row.year,
        price=row.price,
        mileage=row.mileage,
        body_type=row.body_type,
        age_in_years=row.age_in_years,
        mileage_per_year=row.mileage_per_year,
        mileage_rating=MileageRating(row.mileage_rating),
        title_status=row.title_status,
        accident_count=row.accident_count,
        owner_count=row.owner_count,
        is_rental=row.is_rental,
        is_fleet=row.is_fleet,
        has_lien=row.has_lien,
        flood_damage=row.flood_damage,
        state_of_origin=row.state_of_origin,
        is_rust_belt_state=row.is_rust_belt_state,
        flag_rust_concern=row.flag_rust_concern,
        current_location=row.current_location,
        distance_miles=row.distance_miles,
        dealer_name=row.dealer_name,
        priority_score=row.priority_score,
        score_breakdown=row.score_breakdown,
        source_platform=row.source_platform,
        source_url=row.source_url,
        source_listing_id=row.source_listing_id,
        images_url=list(row.images_url or []),
        vin_decode_data=row.vin_decode_data,
        vin_history_data=row.vin_history_data,
        reviewed_by_user=row.reviewed_by_user,
        user_rating=row.user_rating,
        user_notes=row.user_notes,
        first_seen_at=_ensure_utc(row.first_seen_at),
        last_updated_at=_ensure_utc(row.last_updated_at),
        created_at=_ensure_utc(row.created_at),
    )


def _apply_content(row: models.CuratedListing, record: VehicleRecord) -> None:
    content = record.content()
    for name in CONTENT_FIELDS:
        if name == "vin":
            continue
        setattr(row, name, content[name])


class SqlAlchemyCuratedStore:
    """Curated set persisted through SQLAlchemy, one row per VIN."""

    def __init__(
        self,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._session_scope = session_factory
        self._clock = clock

    def get_by_vin(self, vin: str) -> Optional[VehicleRecord]:
        key = normalize_vin(vin)
        if not key:
            return None
        try:
            with self._session_scope() as session:
                row = session.get(models.CuratedListing, key)
                return _to_record(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to read {key}: {exc}") from exc

    def upsert(self, record: VehicleRecord) -> VehicleRecord:
        """Insert or overwrite the listing content for ``record.vin``.

        Review state, ``first_seen_at`` and ``created_at`` of an existing row are
        kept; re-running the same upsert leaves exactly one row.
        """
        now = self._clock()
        try:
            with self._session_scope() as session:
                row = session.get(models.CuratedListing, record.vin)
                if row is None:
                    row = models.CuratedListing(
                        vin=record.vin,
                        first_seen_at=record.first_seen_at or now,
                        created_at=record.created_at or now,
                        reviewed_by_user=record.reviewed_by_user,
                        user_rating=record.user_rating,
                        user_notes=record.user_notes,
                    )
                    session.add(row)
                _apply_content(row, record)
                row.last_updated_at = now
                session.flush()
                return _to_record(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to upsert {record.vin}: {exc}") from exc

    def query(self, criteria: Optional[Dict[str, Any]] = None) -> List[VehicleRecord]:
        criteria = criteria or {}
        stmt = select(models.CuratedListing)
        if criteria.get("make"):
            stmt = stmt.where(models.CuratedListing.make == criteria["make"])
        if criteria.get("model"):
            stmt = stmt.where(models.CuratedListing.model == criteria["model"])
        if criteria.get("year_min") is not None:
            stmt = stmt.where(models.CuratedListing.year >= criteria["year_min"])
        if criteria.get("year_max") is not None:
            stmt = stmt.where(models.CuratedListing.year <= criteria["year_max"])
        if criteria.get("price_min") is not None:
            stmt = stmt.where(models.CuratedListing.price >= criteria["price_min"])
        if criteria.get("price_max") is not None:
            stmt = stmt.where(models.CuratedListing.price <= criteria["price_max"])
        if criteria.get("mileage_max") is not None:
            stmt = stmt.where(models.CuratedListing.mileage <= criteria["mileage_max"])
        stmt = stmt.order_by(models.CuratedListing.created_at.asc(), models.CuratedListing.vin.asc())
        if criteria.get("limit"):
            stmt = stmt.limit(int(criteria["limit"]))

        try:
            with self._session_scope() as session:
                rows = session.execute(stmt).scalars().all()
                return [_to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to query curated listings: {exc}") from exc

    def update_review(self, vin: str, changes: Dict[str, Any]) -> Optional[VehicleRecord]:
        unknown = set(changes) - set(REVIEW_FIELDS)
        if unknown:
            raise ValueError(f"Not review fields: {', '.join(sorted(unknown))}")
        key = normalize_vin(vin)
        if not key:
            return None
        try:
            with self._session_scope() as session:
                row = session.get(models.CuratedListing, key)
                if row is None:
                    return None
                for name, value in changes.items():
                    setattr(row, name, value)
                session.flush()
                return _to_record(row)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to update review for {key}: {exc}") from exc

    def insert_run_summary(self, summary: RunSummary) -> None:
        execution_ms = summary.execution_time_ms
        try:
            with self._session_scope() as session:
                session.add(
                    models.SearchLog(
                        id=summary.run_id,
                        search_date=summary.started_at,
                        completed_at=summary.completed_at,
                        status=summary.status.value,
                        incomplete=summary.incomplete,
                        last_stage=summary.stage.value,
                        source_name=summary.source_name,
                        total_listings_fetched=summary.fetched,
                        listings_after_basic_filter=summary.passed_hard_filter,
                        listings_after_vin_validation=summary.passed_vin_validation,
                        listings_after_history_check=summary.passed_history_check,
                        final_curated_count=summary.stored,
                        duplicates_skipped=summary.duplicates_skipped,
                        api_calls_made=summary.api_calls,
                        api_cost_usd=Decimal(str(summary.api_cost_usd)),
                        execution_time_seconds=(
                            Decimal(execution_ms) / Decimal(1000) if execution_ms is not None else None
                        ),
                        error_count=summary.error_count,
                        error_details={
                            "errors": [error.to_dict() for error in summary.errors],
                            "rejections": dict(summary.rejections),
                        },
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to persist run summary {summary.run_id}: {exc}") from exc

    def list_run_summaries(self, limit: int = 20) -> List[Dict[str, Any]]:
        stmt = select(models.SearchLog).order_by(models.SearchLog.search_date.desc()).limit(limit)
        with self._session_scope() as session:
            rows = session.execute(stmt).scalars().all()
            return [
                {
                    "run_id": row.id,
                    "status": row.status,
                    "incomplete": row.incomplete,
                    "stage": row.last_stage,
                    "source": row.source_name,
                    "started_at": _ensure_utc(row.search_date).isoformat(),
                    "completed_at": _ensure_utc(row.completed_at).isoformat() if row.completed_at else None,
                    "stats": {
                        "fetched": row.total_listings_fetched,
                        "passed_hard_filter": row.listings_after_basic_filter,
                        "passed_vin_validation": row.listings_after_vin_validation,
                        "passed_history_check": row.listings_after_history_check,
                        "stored": row.final_curated_count,
                        "duplicates_skipped": row.duplicates_skipped,
                        "errors": row.error_count,
                    },
                    "errors": (row.error_details or {}).get("errors", []),
                }
                for row in rows
            ]
