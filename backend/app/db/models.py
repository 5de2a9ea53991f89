from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, Text, DateTime, JSON, Index, CheckConstraint, func
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB, UUID

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")
UUIDType = String(36).with_variant(UUID(as_uuid=False), "postgresql")

class CuratedListing(Base):
    __tablename__ = "curated_listings"
    vin = Column(String(17), primary_key=True)
    make = Column(Text, nullable=False)
    model = Column(Text, nullable=False)
    year = Column(Integer, nullable=False)
    body_type = Column(Text)
    price = Column(Integer, nullable=False)
    mileage = Column(Integer, nullable=False)
    age_in_years = Column(Integer, nullable=False)
    mileage_per_year = Column(Integer, nullable=False)
    mileage_rating = Column(Text, nullable=False)  # excellent|good|acceptable|unrated
    title_status = Column(Text, nullable=False)
    accident_count = Column(Integer, nullable=False, default=0)
    owner_count = Column(Integer, nullable=False, default=1)
    is_rental = Column(Boolean, nullable=False, default=False)
    is_fleet = Column(Boolean, nullable=False, default=False)
    has_lien = Column(Boolean, nullable=False, default=False)
    flood_damage = Column(Boolean, nullable=False, default=False)
    state_of_origin = Column(String(2), nullable=False, default="")
    is_rust_belt_state = Column(Boolean, nullable=False, default=False)
    flag_rust_concern = Column(Boolean, nullable=False, default=False)
    current_location = Column(Text, nullable=False, default="")
    distance_miles = Column(Integer, nullable=False, default=0)
    dealer_name = Column(Text)
    priority_score = Column(Integer, nullable=False, default=5)
    score_breakdown = Column(JSONType)
    source_platform = Column(Text, nullable=False, default="")
    source_url = Column(Text, nullable=False, default="")
    source_listing_id = Column(Text)
    images_url = Column(JSONType)
    vin_decode_data = Column(JSONType)
    vin_history_data = Column(JSONType)
    reviewed_by_user = Column(Boolean, nullable=False, default=False)
    user_rating = Column(Integer)
    user_notes = Column(Text)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_updated_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        CheckConstraint("priority_score >= 0 AND priority_score <= 100", name="ck_curated_priority_score"),
        CheckConstraint("user_rating IS NULL OR (user_rating >= 1 AND user_rating <= 5)", name="ck_curated_user_rating"),
        Index("idx_curated_make_model", "make", "model"),
        Index("idx_curated_priority", "priority_score", "mileage"),
        Index("idx_curated_created", "created_at"),
    )

class SearchLog(Base):
    """One row per pipeline run; never updated after insert."""
    __tablename__ = "search_logs"
    id = Column(UUIDType, primary_key=True)
    search_date = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    status = Column(Text, nullable=False)  # completed|failed|incomplete
    incomplete = Column(Boolean, nullable=False, default=False)
    last_stage = Column(Text)
    source_name = Column(Text)
    total_listings_fetched = Column(Integer, nullable=False, default=0)
    listings_after_basic_filter = Column(Integer, nullable=False, default=0)
    listings_after_vin_validation = Column(Integer, nullable=False, default=0)
    listings_after_history_check = Column(Integer, nullable=False, default=0)
    final_curated_count = Column(Integer, nullable=False, default=0)
    duplicates_skipped = Column(Integer, nullable=False, default=0)
    api_calls_made = Column(Integer, nullable=False, default=0)
    api_cost_usd = Column(Numeric(10, 2))
    execution_time_seconds = Column(Numeric(10, 2))
    error_count = Column(Integer, nullable=False, default=0)
    error_details = Column(JSONType)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (Index("idx_search_logs_date", "search_date"),)
