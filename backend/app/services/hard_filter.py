"""Hard-reject rules applied to every raw listing before it can be curated.

Rules run in a fixed order and the first failure is the reported reason, so
the same listing always produces the same diagnostic:

1. price within the policy range (inclusive)
2. model year at or above the floor
3. mileage at or below ``age_in_years * mileage_per_year_max``
4. title status equals the required status
5. accident count at or below the maximum
6. owner count at or below the maximum
7. not rental, fleet, lien-encumbered or flood-damaged

A listing missing a field any rule needs, or carrying a negative mileage or
accident count or an owner count below one, is rejected with a
``missing_data`` reason before rule 1 runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from backend.app.core.policy import CurationPolicy
from backend.app.services.records import RawListing, age_in_years, current_year, is_rust_belt_state, is_valid_vin

REQUIRED_FIELDS = (
    "vin",
    "make",
    "model",
    "year",
    "price",
    "mileage",
    "title_status",
    "accident_count",
    "owner_count",
)

RULE_MISSING_DATA = "missing_data"
RULE_PRICE = "price_range"
RULE_YEAR = "year_min"
RULE_MILEAGE = "mileage_ceiling"
RULE_TITLE = "title_status"
RULE_ACCIDENTS = "accident_count"
RULE_OWNERS = "owner_count"
RULE_RENTAL = "rental"
RULE_FLEET = "fleet"
RULE_LIEN = "lien"
RULE_FLOOD = "flood_damage"
RULE_RUST_BELT = "rust_belt"


class HistoryFacts(Protocol):
    title_status: Optional[str]
    accident_count: Optional[int]
    owner_count: Optional[int]
    is_rental: Optional[bool]
    is_fleet: Optional[bool]
    has_lien: Optional[bool]
    flood_damage: Optional[bool]


@dataclass(frozen=True)
class FilterDecision:
    accepted: bool
    rule: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "FilterDecision":
        return cls(accepted=True)

    @classmethod
    def reject(cls, rule: str, reason: str) -> "FilterDecision":
        return cls(accepted=False, rule=rule, reason=reason)


def _out_of_range(facts: Any) -> List[str]:
    invalid = []
    mileage = getattr(facts, "mileage", None)
    if mileage is not None and mileage < 0:
        invalid.append(f"mileage ({mileage})")
    if facts.accident_count is not None and facts.accident_count < 0:
        invalid.append(f"accident_count ({facts.accident_count})")
    if facts.owner_count is not None and facts.owner_count < 1:
        invalid.append(f"owner_count ({facts.owner_count})")
    return invalid


def _missing_fields(listing: RawListing) -> List[str]:
    missing = [name for name in REQUIRED_FIELDS if getattr(listing, name) is None]
    if listing.vin is not None and not is_valid_vin(listing.vin):
        missing.append("vin (malformed)")
    return missing + _out_of_range(listing)


class HardFilterEngine:
    """Pure accept/reject evaluation against an injected :class:`CurationPolicy`."""

    def __init__(self, policy: CurationPolicy, *, year_now: Optional[int] = None):
        self.policy = policy
        self._year_now = year_now

    @property
    def year_now(self) -> int:
        return self._year_now if self._year_now is not None else current_year()

    def mileage_ceiling(self, model_year: int) -> int:
        return age_in_years(model_year, self.year_now) * self.policy.mileage_per_year_max

    def evaluate(self, listing: RawListing) -> FilterDecision:
        missing = _missing_fields(listing)
        if missing:
            return FilterDecision.reject(RULE_MISSING_DATA, f"Missing or invalid data: {', '.join(missing)}")

        policy = self.policy
        if listing.price < policy.price_min:
            return FilterDecision.reject(
                RULE_PRICE, f"Price ${listing.price:,} below minimum ${policy.price_min:,}"
            )
        if listing.price > policy.price_max:
            return FilterDecision.reject(
                RULE_PRICE, f"Price ${listing.price:,} above maximum ${policy.price_max:,}"
            )

        if listing.year < policy.year_min:
            return FilterDecision.reject(RULE_YEAR, f"Year {listing.year} below minimum {policy.year_min}")

        ceiling = self.mileage_ceiling(listing.year)
        if listing.mileage > ceiling:
            age = age_in_years(listing.year, self.year_now)
            return FilterDecision.reject(
                RULE_MILEAGE,
                f"Mileage {listing.mileage:,} exceeds maximum {ceiling:,} for {age}-year-old vehicle",
            )

        decision = self._history_rules(listing, skip_unknown=False)
        if not decision.accepted:
            return decision

        if policy.exclude_rust_belt and is_rust_belt_state(listing.state_of_origin, policy.rust_belt_states):
            return FilterDecision.reject(
                RULE_RUST_BELT, f"Rust belt vehicles excluded ({listing.state_of_origin})"
            )

        return FilterDecision.accept()

    def evaluate_history(self, history: HistoryFacts) -> FilterDecision:
        """Apply rules 4-7 to facts reported by a history provider.

        Facts the provider did not report are skipped; the listing's own
        values for them already passed :meth:`evaluate`.
        """
        invalid = _out_of_range(history)
        if invalid:
            return FilterDecision.reject(RULE_MISSING_DATA, f"Invalid history data: {', '.join(invalid)}")
        return self._history_rules(history, skip_unknown=True)

    def _history_rules(self, facts: Any, *, skip_unknown: bool) -> FilterDecision:
        policy = self.policy

        title = facts.title_status
        if title is not None or not skip_unknown:
            if (title or "").strip().lower() != policy.required_title_status.lower():
                return FilterDecision.reject(
                    RULE_TITLE, f"Title status '{title}' must be '{policy.required_title_status}'"
                )

        accidents = facts.accident_count
        if accidents is not None and accidents > policy.max_accidents:
            return FilterDecision.reject(
                RULE_ACCIDENTS, f"Accident count {accidents} exceeds maximum {policy.max_accidents}"
            )

        owners = facts.owner_count
        if owners is not None and owners > policy.max_owners:
            return FilterDecision.reject(
                RULE_OWNERS, f"Owner count {owners} exceeds maximum {policy.max_owners}"
            )

        if policy.exclude_rental and facts.is_rental:
            return FilterDecision.reject(RULE_RENTAL, "Rental vehicles excluded")
        if policy.exclude_fleet and facts.is_fleet:
            return FilterDecision.reject(RULE_FLEET, "Fleet vehicles excluded")
        if policy.exclude_liens and facts.has_lien:
            return FilterDecision.reject(RULE_LIEN, "Vehicles with liens excluded")
        if policy.exclude_flood_damage and facts.flood_damage:
            return FilterDecision.reject(RULE_FLOOD, "Flood damage detected")

        return FilterDecision.accept()
