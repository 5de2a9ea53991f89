"""Curated listings and search log tables.

Revision ID: 0001_curated_listings
Revises: None
Create Date: 2025-10-17 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_curated_listings"
down_revision = None
branch_labels = None
depends_on = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "curated_listings",
        sa.Column("vin", sa.String(length=17), primary_key=True),
        sa.Column("make", sa.Text(), nullable=False),
        sa.Column("model", sa.Text(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("body_type", sa.Text(), nullable=True),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("mileage", sa.Integer(), nullable=False),
        sa.Column("age_in_years", sa.Integer(), nullable=False),
        sa.Column("mileage_per_year", sa.Integer(), nullable=False),
        sa.Column("mileage_rating", sa.Text(), nullable=False),
        sa.Column("title_status", sa.Text(), nullable=False),
        sa.Column("accident_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("owner_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_rental", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_fleet", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_lien", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("flood_damage", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("state_of_origin", sa.String(length=2), nullable=False, server_default=""),
        sa.Column("is_rust_belt_state", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("flag_rust_concern", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("current_location", sa.Text(), nullable=False, server_default=""),
        sa.Column("distance_miles", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("dealer_name", sa.Text(), nullable=True),
        sa.Column("priority_score", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("score_breakdown", _json(), nullable=True),
        sa.Column("source_platform", sa.Text(), nullable=False, server_default=""),
        sa.Column("source_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("source_listing_id", sa.Text(), nullable=True),
        sa.Column("images_url", _json(), nullable=True),
        sa.Column("vin_decode_data", _json(), nullable=True),
        sa.Column("vin_history_data", _json(), nullable=True),
        sa.Column("reviewed_by_user", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("user_rating", sa.Integer(), nullable=True),
        sa.Column("user_notes", sa.Text(), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.CheckConstraint("priority_score >= 0 AND priority_score <= 100", name="ck_curated_priority_score"),
        sa.CheckConstraint(
            "user_rating IS NULL OR (user_rating >= 1 AND user_rating <= 5)", name="ck_curated_user_rating"
        ),
    )
    op.create_index("idx_curated_make_model", "curated_listings", ["make", "model"])
    op.create_index("idx_curated_priority", "curated_listings", ["priority_score", "mileage"])
    op.create_index("idx_curated_created", "curated_listings", ["created_at"])

    op.create_table(
        "search_logs",
        sa.Column("id", sa.String(length=36).with_variant(postgresql.UUID(as_uuid=False), "postgresql"), primary_key=True),
        sa.Column("search_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("incomplete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_stage", sa.Text(), nullable=True),
        sa.Column("source_name", sa.Text(), nullable=True),
        sa.Column("total_listings_fetched", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("listings_after_basic_filter", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("listings_after_vin_validation", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("listings_after_history_check", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_curated_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("duplicates_skipped", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("api_calls_made", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("api_cost_usd", sa.Numeric(10, 2), nullable=True),
        sa.Column("execution_time_seconds", sa.Numeric(10, 2), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_details", _json(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index("idx_search_logs_date", "search_logs", ["search_date"])


def downgrade() -> None:
    op.drop_index("idx_search_logs_date", table_name="search_logs")
    op.drop_table("search_logs")
    op.drop_index("idx_curated_created", table_name="curated_listings")
    op.drop_index("idx_curated_priority", table_name="curated_listings")
    op.drop_index("idx_curated_make_model", table_name="curated_listings")
    op.drop_table("curated_listings")
