import pytest

from backend.app.core.policy import CurationPolicy
from backend.app.services.hard_filter import (
    RULE_ACCIDENTS,
    RULE_FLEET,
    RULE_FLOOD,
    RULE_LIEN,
    RULE_MILEAGE,
    RULE_MISSING_DATA,
    RULE_OWNERS,
    RULE_PRICE,
    RULE_RENTAL,
    RULE_RUST_BELT,
    RULE_TITLE,
    RULE_YEAR,
    HardFilterEngine,
)
from backend.app.services.records import RawListing
from backend.app.services.vin_client import VinHistory

YEAR_NOW = 2025


def make_listing(**overrides) -> RawListing:
    data = dict(
        vin="JTMRFREV5JJ123456",
        make="Toyota",
        model="RAV4",
        year=2020,
        price=15000,
        mileage=60000,
        title_status="clean",
        accident_count=0,
        owner_count=1,
        state_of_origin="CO",
    )
    data.update(overrides)
    return RawListing(**data)


@pytest.fixture
def engine():
    return HardFilterEngine(CurationPolicy(), year_now=YEAR_NOW)


def test_clean_listing_is_accepted(engine):
    decision = engine.evaluate(make_listing())
    assert decision.accepted
    assert decision.rule is None


@pytest.mark.parametrize("accidents", [1, 2, 5, 40])
def test_any_accident_rejects(engine, accidents):
    decision = engine.evaluate(make_listing(accident_count=accidents))
    assert not decision.accepted
    assert decision.rule == RULE_ACCIDENTS


@pytest.mark.parametrize("price", [10000, 15000, 20000])
def test_price_bounds_are_inclusive(engine, price):
    assert engine.evaluate(make_listing(price=price)).accepted


@pytest.mark.parametrize("price", [9999, 20001])
def test_price_outside_range_rejects(engine, price):
    decision = engine.evaluate(make_listing(price=price))
    assert decision.rule == RULE_PRICE
    assert f"{price:,}" in decision.reason


def test_year_below_floor_rejects(engine):
    decision = engine.evaluate(make_listing(year=2014, mileage=10000))
    assert decision.rule == RULE_YEAR


def test_mileage_ceiling_is_inclusive(engine):
    # 2020 in 2025 -> 5 years * 20,000
    assert engine.mileage_ceiling(2020) == 100000
    assert engine.evaluate(make_listing(mileage=100000)).accepted
    decision = engine.evaluate(make_listing(mileage=100001))
    assert decision.rule == RULE_MILEAGE
    assert "5-year-old" in decision.reason


def test_current_model_year_has_zero_ceiling(engine):
    assert engine.mileage_ceiling(YEAR_NOW) == 0
    decision = engine.evaluate(make_listing(year=YEAR_NOW, mileage=12))
    assert decision.rule == RULE_MILEAGE


def test_first_failing_rule_is_reported(engine):
    decision = engine.evaluate(make_listing(price=50000, accident_count=3, is_rental=True))
    assert decision.rule == RULE_PRICE


@pytest.mark.parametrize("title", ["salvage", "rebuilt", "lemon"])
def test_non_clean_title_rejects(engine, title):
    assert engine.evaluate(make_listing(title_status=title)).rule == RULE_TITLE


def test_title_comparison_ignores_case(engine):
    assert engine.evaluate(make_listing(title_status="Clean")).accepted


def test_owner_limit(engine):
    assert engine.evaluate(make_listing(owner_count=2)).accepted
    assert engine.evaluate(make_listing(owner_count=3)).rule == RULE_OWNERS


@pytest.mark.parametrize(
    "flag, rule",
    [("is_rental", RULE_RENTAL), ("is_fleet", RULE_FLEET), ("has_lien", RULE_LIEN), ("flood_damage", RULE_FLOOD)],
)
def test_flagged_history_rejects(engine, flag, rule):
    assert engine.evaluate(make_listing(**{flag: True})).rule == rule


def test_absent_flags_count_as_not_flagged(engine):
    listing = make_listing(is_rental=None, is_fleet=None, has_lien=None, flood_damage=None)
    assert engine.evaluate(listing).accepted


@pytest.mark.parametrize("field", ["vin", "make", "model", "year", "price", "mileage", "title_status"])
def test_missing_required_field_rejects_without_raising(engine, field):
    decision = engine.evaluate(make_listing(**{field: None}))
    assert decision.rule == RULE_MISSING_DATA
    assert field in decision.reason


def test_empty_listing_is_missing_data(engine):
    assert engine.evaluate(RawListing()).rule == RULE_MISSING_DATA


def test_malformed_vin_is_missing_data(engine):
    decision = engine.evaluate(make_listing(vin="JTMRFREV5JJ12345O"))
    assert decision.rule == RULE_MISSING_DATA
    assert "malformed" in decision.reason


@pytest.mark.parametrize(
    "overrides, field",
    [({"accident_count": -1}, "accident_count"), ({"owner_count": 0}, "owner_count"), ({"mileage": -5}, "mileage")],
)
def test_out_of_range_counts_are_invalid_data(engine, overrides, field):
    decision = engine.evaluate(make_listing(**overrides))
    assert decision.rule == RULE_MISSING_DATA
    assert field in decision.reason


def test_history_with_impossible_counts_is_rejected(engine):
    history = VinHistory(vin="JTMRFREV5JJ123456", title_status="clean", accident_count=0, owner_count=0)
    decision = engine.evaluate_history(history)
    assert decision.rule == RULE_MISSING_DATA
    assert "owner_count (0)" in decision.reason


def test_rust_belt_only_rejects_when_excluded():
    listing = make_listing(state_of_origin="OH")
    assert HardFilterEngine(CurationPolicy(), year_now=YEAR_NOW).evaluate(listing).accepted

    strict = HardFilterEngine(CurationPolicy(exclude_rust_belt=True), year_now=YEAR_NOW)
    assert strict.evaluate(listing).rule == RULE_RUST_BELT


def test_policy_thresholds_are_injected():
    lenient = CurationPolicy(max_accidents=1, price_max=30000)
    engine = HardFilterEngine(lenient, year_now=YEAR_NOW)
    assert engine.evaluate(make_listing(accident_count=1, price=25000)).accepted


def test_history_rules_skip_unreported_facts(engine):
    assert engine.evaluate_history(VinHistory(vin="JTMRFREV5JJ123456")).accepted


def test_history_rules_apply_reported_facts(engine):
    history = VinHistory(vin="JTMRFREV5JJ123456", title_status="clean", accident_count=2)
    assert engine.evaluate_history(history).rule == RULE_ACCIDENTS

    history = VinHistory(vin="JTMRFREV5JJ123456", title_status="salvage")
    assert engine.evaluate_history(history).rule == RULE_TITLE

    history = VinHistory(vin="JTMRFREV5JJ123456", flood_damage=True)
    assert engine.evaluate_history(history).rule == RULE_FLOOD
