import pytest

from backend.app.core.policy import CurationPolicy
from backend.app.services.records import MileageRating, RawListing
from backend.app.services.scoring import (
    ModelPriorityScorer,
    WeightedFactorScorer,
    build_scorer,
    lookup_model_priority,
)


def make_listing(**overrides) -> RawListing:
    data = dict(
        vin="JTMRFREV5JJ123456",
        make="Toyota",
        model="RAV4",
        year=2020,
        price=10000,
        mileage=40000,
        title_status="clean",
        accident_count=0,
        owner_count=1,
        state_of_origin="CO",
        distance_miles=12,
    )
    data.update(overrides)
    return RawListing(**data)


@pytest.mark.parametrize(
    "model, expected",
    [("RAV4", 10), ("CR-V", 9), ("HR-V", 8), ("Pilot", 6), ("rav4", 10), ("Camry", 5), (None, 5)],
)
def test_model_priority_lookup(model, expected):
    scorer = ModelPriorityScorer.from_policy(CurationPolicy())
    result = scorer.score(make_listing(model=model), MileageRating.EXCELLENT)
    assert result.score == expected
    assert result.breakdown is None


def test_scores_are_clamped_to_range():
    scorer = ModelPriorityScorer({"Hypercar": 250, "Lemon": -10})
    assert scorer.score(make_listing(model="Hypercar"), MileageRating.GOOD).score == 100
    assert scorer.score(make_listing(model="Lemon"), MileageRating.GOOD).score == 0


def test_lookup_prefers_exact_match():
    priorities = {"rav4": 3, "RAV4": 10}
    assert lookup_model_priority("RAV4", priorities, 5) == 10


def test_weighted_scorer_best_case_is_100():
    scorer = WeightedFactorScorer(CurationPolicy())
    result = scorer.score(make_listing(), MileageRating.EXCELLENT)
    assert result.score == 100
    assert set(result.breakdown) == {"title", "mileage", "price", "distance", "model", "condition"}


def test_weighted_scorer_penalizes_condition():
    scorer = WeightedFactorScorer(CurationPolicy())
    clean = scorer.score(make_listing(), MileageRating.GOOD)
    worn = scorer.score(
        make_listing(owner_count=2, accident_count=1, state_of_origin="MI", distance_miles=200, price=20000),
        MileageRating.ACCEPTABLE,
    )
    assert 0 <= worn.score < clean.score <= 100
    assert worn.breakdown["distance"]["points"] == 0
    assert worn.breakdown["price"]["points"] == 0
    assert worn.breakdown["condition"]["points"] == 0
    assert "rust belt" in worn.breakdown["condition"]["reason"]


def test_build_scorer_selects_strategy():
    policy = CurationPolicy()
    assert isinstance(build_scorer("model_priority", policy), ModelPriorityScorer)
    assert isinstance(build_scorer("weighted", policy), WeightedFactorScorer)
    with pytest.raises(ValueError):
        build_scorer("ml", policy)
