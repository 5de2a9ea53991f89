"""Listing shapes shared by the filter engine, pipeline, store and query services."""

from __future__ import annotations

import json
import math
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")


class MileageRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    UNRATED = "unrated"


class QualityTier(str, Enum):
    TOP_PICK = "top_pick"
    GOOD_BUY = "good_buy"
    CAUTION = "caution"


TOP_PICK_MIN_SCORE = 80
GOOD_BUY_MIN_SCORE = 65

# Higher rank sorts first when ordering by tier descending.
QUALITY_TIER_RANK = {
    QualityTier.CAUTION: 0,
    QualityTier.GOOD_BUY: 1,
    QualityTier.TOP_PICK: 2,
}


def quality_tier_for_score(score: int) -> QualityTier:
    if score >= TOP_PICK_MIN_SCORE:
        return QualityTier.TOP_PICK
    if score >= GOOD_BUY_MIN_SCORE:
        return QualityTier.GOOD_BUY
    return QualityTier.CAUTION


def normalize_vin(value: Any) -> Optional[str]:
    if value is None:
        return None
    cleaned = re.sub(r"\s+", "", str(value)).upper()
    return cleaned or None


def is_valid_vin(vin: Optional[str]) -> bool:
    return bool(vin) and bool(VIN_RE.match(vin))


def current_year() -> int:
    return datetime.now(timezone.utc).year


def age_in_years(model_year: int, year_now: Optional[int] = None) -> int:
    """Vehicle age, clamped at zero for same-year or future model years."""
    year_now = current_year() if year_now is None else year_now
    return max(year_now - model_year, 0)


def mileage_per_year(mileage: int, model_year: int, year_now: Optional[int] = None) -> int:
    divisor = max(age_in_years(model_year, year_now), 1)
    # half-up; mileage is never negative
    return int(math.floor(mileage / divisor + 0.5))


def is_rust_belt_state(state: Optional[str], rust_belt_states: Iterable[str]) -> bool:
    if not state:
        return False
    return state.strip().upper() in set(rust_belt_states)


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        text = str(value).replace(",", "").replace("$", "").strip()
        if not text:
            return None
        number = float(text)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return int(round(number))


def _as_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return bool(value)
    text = str(value).strip().lower()
    if text in {"true", "yes", "y", "1"}:
        return True
    if text in {"false", "no", "n", "0"}:
        return False
    return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


@dataclass
class RawListing:
    """A listing as delivered by a source, before any curation.

    Every field is optional: sources omit history fields routinely, and a
    missing required field is a rejection reason, not a crash.
    """

    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    body_type: Optional[str] = None
    price: Optional[int] = None
    mileage: Optional[int] = None
    title_status: Optional[str] = None
    accident_count: Optional[int] = None
    owner_count: Optional[int] = None
    is_rental: Optional[bool] = None
    is_fleet: Optional[bool] = None
    has_lien: Optional[bool] = None
    flood_damage: Optional[bool] = None
    state_of_origin: Optional[str] = None
    location: Optional[str] = None
    distance_miles: Optional[int] = None
    dealer_name: Optional[str] = None
    source_platform: Optional[str] = None
    source_url: Optional[str] = None
    source_listing_id: Optional[str] = None
    images: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RawListing":
        lookup = {str(k).lower(): v for k, v in data.items()}

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in lookup and lookup[key] is not None:
                    return lookup[key]
            return None

        images = pick("images", "images_url", "photo_links") or []
        if isinstance(images, str):
            images = [images]
        state = _as_str(pick("state_of_origin", "state"))

        return cls(
            vin=normalize_vin(pick("vin")),
            make=_as_str(pick("make")),
            model=_as_str(pick("model")),
            year=_as_int(pick("year", "model_year")),
            body_type=_as_str(pick("body_type")),
            price=_as_int(pick("price")),
            mileage=_as_int(pick("mileage", "miles", "odometer")),
            title_status=_as_str(pick("title_status")),
            accident_count=_as_int(pick("accident_count", "accidents")),
            owner_count=_as_int(pick("owner_count", "owners")),
            is_rental=_as_bool(pick("is_rental", "rental")),
            is_fleet=_as_bool(pick("is_fleet", "fleet")),
            has_lien=_as_bool(pick("has_lien", "lien")),
            flood_damage=_as_bool(pick("flood_damage", "flood")),
            state_of_origin=state.upper() if state else None,
            location=_as_str(pick("location", "current_location")),
            distance_miles=_as_int(pick("distance_miles", "distance")),
            dealer_name=_as_str(pick("dealer_name")),
            source_platform=_as_str(pick("source_platform", "source")),
            source_url=_as_str(pick("source_url", "url")),
            source_listing_id=_as_str(pick("source_listing_id", "listing_id")),
            images=[str(url) for url in images if url],
        )

    @property
    def label(self) -> str:
        return f"{self.year or '?'} {self.make or '?'} {self.model or '?'} ({self.vin or 'no VIN'})"


# Fields that make up the listing content; review state and timestamps are
# owned by the store and excluded from duplicate detection.
CONTENT_FIELDS = (
    "vin",
    "make",
    "model",
    "year",
    "body_type",
    "price",
    "mileage",
    "age_in_years",
    "mileage_per_year",
    "mileage_rating",
    "title_status",
    "accident_count",
    "owner_count",
    "is_rental",
    "is_fleet",
    "has_lien",
    "flood_damage",
    "state_of_origin",
    "is_rust_belt_state",
    "flag_rust_concern",
    "current_location",
    "distance_miles",
    "dealer_name",
    "priority_score",
    "score_breakdown",
    "source_platform",
    "source_url",
    "source_listing_id",
    "images_url",
    "vin_decode_data",
    "vin_history_data",
)


@dataclass
class VehicleRecord:
    vin: str
    make: str
    model: str
    year: int
    price: int
    mileage: int
    body_type: Optional[str] = None
    age_in_years: int = 0
    mileage_per_year: int = 0
    mileage_rating: MileageRating = MileageRating.UNRATED
    title_status: str = "clean"
    accident_count: int = 0
    owner_count: int = 1
    is_rental: bool = False
    is_fleet: bool = False
    has_lien: bool = False
    flood_damage: bool = False
    state_of_origin: str = ""
    is_rust_belt_state: bool = False
    flag_rust_concern: bool = False
    current_location: str = ""
    distance_miles: int = 0
    dealer_name: Optional[str] = None
    priority_score: int = 5
    score_breakdown: Optional[Dict[str, Any]] = None
    source_platform: str = ""
    source_url: str = ""
    source_listing_id: Optional[str] = None
    images_url: List[str] = field(default_factory=list)
    vin_decode_data: Optional[Dict[str, Any]] = None
    vin_history_data: Optional[Dict[str, Any]] = None
    reviewed_by_user: bool = False
    user_rating: Optional[int] = None
    user_notes: Optional[str] = None
    first_seen_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def quality_tier(self) -> QualityTier:
        return quality_tier_for_score(self.priority_score)

    def content(self) -> Dict[str, Any]:
        data = asdict(self)
        payload = {name: data[name] for name in CONTENT_FIELDS}
        payload["mileage_rating"] = MileageRating(self.mileage_rating).value
        return payload

    def fingerprint(self) -> str:
        return json.dumps(self.content(), sort_keys=True, default=str, separators=(",", ":"))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mileage_rating"] = MileageRating(self.mileage_rating).value
        data["quality_tier"] = self.quality_tier.value
        for key in ("first_seen_at", "last_updated_at", "created_at"):
            value = data.get(key)
            data[key] = value.isoformat() if value else None
        return data
