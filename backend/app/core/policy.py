"""Curation policy: the thresholds and tables the filter engine and scorer run on.

The policy is an explicit value handed to the engines at construction time so a
caller (or a test) can swap thresholds without touching process-wide state.
Defaults mirror the buyer profile the curated set was built for; a YAML file
can override any subset of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

DEFAULT_MODEL_PRIORITIES: Dict[str, int] = {
    "RAV4": 10,
    "C-HR": 9,
    "CR-V": 9,
    "HR-V": 8,
    "Highlander": 8,
    "4Runner": 7,
    "Venza": 7,
    "Pilot": 6,
}

DEFAULT_RUST_BELT_STATES: Tuple[str, ...] = (
    "OH", "MI", "WI", "IL", "IN", "MN", "IA", "PA", "NY", "MA", "CT", "VT", "NH", "ME",
)


@dataclass(frozen=True)
class CurationPolicy:
    price_min: int = 10_000
    price_max: int = 20_000
    year_min: int = 2015
    mileage_per_year_max: int = 20_000
    mileage_per_year_ideal: int = 15_000
    excellent_mileage_threshold: int = 100_000
    required_title_status: str = "clean"
    max_accidents: int = 0
    max_owners: int = 2
    exclude_rental: bool = True
    exclude_fleet: bool = True
    exclude_liens: bool = True
    exclude_flood_damage: bool = True
    exclude_rust_belt: bool = False
    rust_belt_states: Tuple[str, ...] = DEFAULT_RUST_BELT_STATES
    model_priorities: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_MODEL_PRIORITIES))
    default_priority_score: int = 5

    def with_overrides(self, **overrides: Any) -> "CurationPolicy":
        return replace(self, **overrides)


def _coerce(name: str, value: Any) -> Any:
    if name == "rust_belt_states":
        return tuple(str(state).upper() for state in value or ())
    if name == "model_priorities":
        return {str(model): int(score) for model, score in (value or {}).items()}
    return value


def load_policy(path: Optional[str | Path] = None) -> CurationPolicy:
    """Build a policy from defaults, overlaid with keys from a YAML file.

    Unknown keys are rejected so a typo in the file never silently falls back
    to a default threshold.
    """
    policy = CurationPolicy()
    if not path:
        return policy

    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Policy file {path} must contain a mapping")

    known = {f.name for f in fields(CurationPolicy)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown policy keys in {path}: {', '.join(unknown)}")

    overrides = {name: _coerce(name, value) for name, value in raw.items()}
    return policy.with_overrides(**overrides)
