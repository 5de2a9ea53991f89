import pytest

from backend.app.core.policy import CurationPolicy
from backend.app.services.mileage import classify_mileage
from backend.app.services.records import MileageRating

POLICY = CurationPolicy()
YEAR_NOW = 2025


@pytest.mark.parametrize("model_year", [2015, 2020, 2025, 2026])
def test_under_threshold_is_excellent_at_any_age(model_year):
    assert classify_mileage(99999, model_year, POLICY, year_now=YEAR_NOW) is MileageRating.EXCELLENT


def test_threshold_itself_is_not_excellent():
    # 2017 -> 8 years, good up to 120,000
    assert classify_mileage(100000, 2017, POLICY, year_now=YEAR_NOW) is MileageRating.GOOD


def test_good_band_is_inclusive():
    assert classify_mileage(120000, 2017, POLICY, year_now=YEAR_NOW) is MileageRating.GOOD
    assert classify_mileage(120001, 2017, POLICY, year_now=YEAR_NOW) is MileageRating.ACCEPTABLE


def test_acceptable_band():
    # 2019 -> 6 years: good <= 90,000, acceptable <= 120,000
    assert classify_mileage(100000, 2019, POLICY, year_now=YEAR_NOW) is MileageRating.ACCEPTABLE
    assert classify_mileage(120000, 2019, POLICY, year_now=YEAR_NOW) is MileageRating.ACCEPTABLE


def test_above_acceptable_band_is_unrated():
    assert classify_mileage(150000, 2020, POLICY, year_now=YEAR_NOW) is MileageRating.UNRATED


def test_zero_age_over_threshold_is_unrated():
    assert classify_mileage(150000, YEAR_NOW, POLICY, year_now=YEAR_NOW) is MileageRating.UNRATED
