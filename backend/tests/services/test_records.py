from backend.app.services.records import (
    MileageRating,
    QualityTier,
    RawListing,
    VehicleRecord,
    age_in_years,
    is_valid_vin,
    mileage_per_year,
    normalize_vin,
    quality_tier_for_score,
)


def test_age_is_clamped_at_zero():
    assert age_in_years(2020, 2025) == 5
    assert age_in_years(2025, 2025) == 0
    assert age_in_years(2027, 2025) == 0


def test_mileage_per_year_rounds_half_up():
    assert mileage_per_year(25000, 2023, 2025) == 12500
    assert mileage_per_year(10001, 2023, 2025) == 5001
    assert mileage_per_year(10001, 2025, 2025) == 10001


def test_vin_normalization_and_format():
    assert normalize_vin(" jtm rfrev5jj123456 ") == "JTMRFREV5JJ123456"
    assert normalize_vin("") is None
    assert is_valid_vin("JTMRFREV5JJ123456")
    assert not is_valid_vin("JTMRFREV5JJ12345")
    assert not is_valid_vin("JTMRFREV5JJ12345I")


def test_quality_tiers():
    assert quality_tier_for_score(80) is QualityTier.TOP_PICK
    assert quality_tier_for_score(79) is QualityTier.GOOD_BUY
    assert quality_tier_for_score(65) is QualityTier.GOOD_BUY
    assert quality_tier_for_score(64) is QualityTier.CAUTION


def test_raw_listing_from_mapping_aliases_and_blanks():
    listing = RawListing.from_mapping(
        {
            "VIN": "jtmrfrev5jj123456",
            "Make": "Toyota",
            "model": "RAV4",
            "model_year": "2020",
            "price": "$15,500",
            "miles": 42000.0,
            "accidents": float("nan"),
            "owners": 1,
            "rental": "no",
            "state": "co",
            "url": "https://example.test/1",
            "images": "https://example.test/1.jpg",
        }
    )
    assert listing.vin == "JTMRFREV5JJ123456"
    assert listing.year == 2020
    assert listing.price == 15500
    assert listing.mileage == 42000
    assert listing.accident_count is None
    assert listing.is_rental is False
    assert listing.state_of_origin == "CO"
    assert listing.source_url == "https://example.test/1"
    assert listing.images == ["https://example.test/1.jpg"]


def test_fingerprint_ignores_review_state():
    base = VehicleRecord(vin="JTMRFREV5JJ123456", make="Toyota", model="RAV4", year=2020, price=15000, mileage=1)
    reviewed = VehicleRecord(
        vin="JTMRFREV5JJ123456",
        make="Toyota",
        model="RAV4",
        year=2020,
        price=15000,
        mileage=1,
        reviewed_by_user=True,
        user_rating=4,
    )
    assert base.fingerprint() == reviewed.fingerprint()
    repriced = VehicleRecord(vin="JTMRFREV5JJ123456", make="Toyota", model="RAV4", year=2020, price=14000, mileage=1)
    assert repriced.fingerprint() != base.fingerprint()


def test_record_to_dict_serializes_enums():
    record = VehicleRecord(
        vin="JTMRFREV5JJ123456",
        make="Toyota",
        model="RAV4",
        year=2020,
        price=15000,
        mileage=1,
        mileage_rating=MileageRating.EXCELLENT,
        priority_score=10,
    )
    data = record.to_dict()
    assert data["mileage_rating"] == "excellent"
    assert data["quality_tier"] == "caution"
    assert data["created_at"] is None
