"""Priority scoring strategies.

``ModelPriorityScorer`` is the scorer the pipeline runs by default: a static
model → score table with a fixed fallback. ``WeightedFactorScorer`` combines
title, mileage, price, distance, model and condition points into a 0-100 score
and has to be selected explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from backend.app.core.policy import CurationPolicy
from backend.app.services.records import MileageRating, RawListing, is_rust_belt_state

SCORE_MIN = 0
SCORE_MAX = 100

FACTOR_WEIGHTS = {
    "title": 15,
    "mileage": 25,
    "price": 20,
    "distance": 10,
    "model": 15,
    "condition": 15,
}

MILEAGE_POINTS = {
    MileageRating.EXCELLENT: 25,
    MileageRating.GOOD: 18,
    MileageRating.ACCEPTABLE: 10,
    MileageRating.UNRATED: 0,
}

DISTANCE_FULL_POINTS_MILES = 30
DISTANCE_ZERO_POINTS_MILES = 130


@dataclass(frozen=True)
class ScoreResult:
    score: int
    breakdown: Optional[Dict[str, Dict[str, Any]]] = None


class PriorityScorer(Protocol):
    def score(self, listing: RawListing, mileage_rating: MileageRating) -> ScoreResult: ...


def _clamp(value: float, low: int = SCORE_MIN, high: int = SCORE_MAX) -> int:
    return int(max(low, min(high, round(value))))


def lookup_model_priority(model: Optional[str], priorities: Mapping[str, int], default: int) -> int:
    if not model:
        return default
    normalized = model.strip()
    if normalized in priorities:
        return priorities[normalized]
    lowered = normalized.lower()
    for key, value in priorities.items():
        if key.lower() == lowered:
            return value
    return default


class ModelPriorityScorer:
    def __init__(self, priorities: Mapping[str, int], default: int = 5):
        self.priorities = dict(priorities)
        self.default = default

    @classmethod
    def from_policy(cls, policy: CurationPolicy) -> "ModelPriorityScorer":
        return cls(policy.model_priorities, policy.default_priority_score)

    def score(self, listing: RawListing, mileage_rating: MileageRating) -> ScoreResult:
        value = lookup_model_priority(listing.model, self.priorities, self.default)
        return ScoreResult(score=_clamp(value))


class WeightedFactorScorer:
    def __init__(self, policy: CurationPolicy):
        self.policy = policy

    def score(self, listing: RawListing, mileage_rating: MileageRating) -> ScoreResult:
        breakdown = {
            "title": self._title(listing),
            "mileage": self._mileage(mileage_rating),
            "price": self._price(listing),
            "distance": self._distance(listing),
            "model": self._model(listing),
            "condition": self._condition(listing),
        }
        total = sum(item["points"] for item in breakdown.values())
        return ScoreResult(score=_clamp(total), breakdown=breakdown)

    def _title(self, listing: RawListing) -> Dict[str, Any]:
        clean = (listing.title_status or "").lower() == self.policy.required_title_status.lower()
        points = FACTOR_WEIGHTS["title"] if clean else 0
        return {"points": points, "reason": f"Title status {listing.title_status or 'unknown'}"}

    def _mileage(self, rating: MileageRating) -> Dict[str, Any]:
        rating = MileageRating(rating)
        return {"points": MILEAGE_POINTS[rating], "reason": f"Mileage rated {rating.value}"}

    def _price(self, listing: RawListing) -> Dict[str, Any]:
        low, high = self.policy.price_min, self.policy.price_max
        weight = FACTOR_WEIGHTS["price"]
        if listing.price is None:
            return {"points": 0, "reason": "Price unknown"}
        if high <= low:
            points = weight
        else:
            position = (high - listing.price) / (high - low)
            points = _clamp(weight * position, 0, weight)
        return {"points": points, "reason": f"Price ${listing.price:,} within ${low:,}-${high:,}"}

    def _distance(self, listing: RawListing) -> Dict[str, Any]:
        weight = FACTOR_WEIGHTS["distance"]
        distance = listing.distance_miles
        if distance is None:
            return {"points": 0, "reason": "Distance unknown"}
        if distance <= DISTANCE_FULL_POINTS_MILES:
            points = weight
        else:
            span = DISTANCE_ZERO_POINTS_MILES - DISTANCE_FULL_POINTS_MILES
            points = _clamp(weight * (DISTANCE_ZERO_POINTS_MILES - distance) / span, 0, weight)
        return {"points": points, "reason": f"{distance} miles away"}

    def _model(self, listing: RawListing) -> Dict[str, Any]:
        priority = lookup_model_priority(
            listing.model, self.policy.model_priorities, self.policy.default_priority_score
        )
        points = _clamp(FACTOR_WEIGHTS["model"] * priority / 10, 0, FACTOR_WEIGHTS["model"])
        return {"points": points, "reason": f"Model priority {priority}/10"}

    def _condition(self, listing: RawListing) -> Dict[str, Any]:
        weight = FACTOR_WEIGHTS["condition"]
        points = weight
        points -= 5 * max((listing.owner_count or 1) - 1, 0)
        points -= 7 * (listing.accident_count or 0)
        rust = is_rust_belt_state(listing.state_of_origin, self.policy.rust_belt_states)
        if rust:
            points -= 3
        reason = f"{listing.owner_count or 1} owner(s), {listing.accident_count or 0} accident(s)"
        if rust:
            reason += ", rust belt origin"
        return {"points": _clamp(points, 0, weight), "reason": reason}


def build_scorer(name: str, policy: CurationPolicy) -> PriorityScorer:
    if name == "model_priority":
        return ModelPriorityScorer.from_policy(policy)
    if name == "weighted":
        return WeightedFactorScorer(policy)
    raise ValueError(f"Unknown scoring strategy '{name}'")
