from __future__ import annotations

from typing import Optional

from backend.app.core.policy import CurationPolicy
from backend.app.services.records import MileageRating, age_in_years


def classify_mileage(
    mileage: int,
    model_year: int,
    policy: CurationPolicy,
    *,
    year_now: Optional[int] = None,
) -> MileageRating:
    """Rate odometer reading against the vehicle's age.

    Anything under the flat excellent threshold is excellent regardless of age.
    Above it, a non-positive age cannot be normalized and yields ``unrated``,
    as does mileage past the acceptable per-year ceiling.
    """
    if mileage < policy.excellent_mileage_threshold:
        return MileageRating.EXCELLENT

    age = age_in_years(model_year, year_now)
    if age <= 0:
        return MileageRating.UNRATED
    if mileage <= age * policy.mileage_per_year_ideal:
        return MileageRating.GOOD
    if mileage <= age * policy.mileage_per_year_max:
        return MileageRating.ACCEPTABLE
    return MileageRating.UNRATED
