from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from backend.app.db import models
from backend.app.db.session import session_scope
from backend.app.services.curated_store import SqlAlchemyCuratedStore, StoreError
from backend.app.services.records import MileageRating, VehicleRecord
from backend.app.services.run_summary import ERROR_STAGE_VIN, PipelineStage, RunStatus, RunSummary

pytestmark = pytest.mark.usefixtures("clean_db")

VIN = "JTMRFREV5JJ123456"


class StepClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(hours=1)
        return current


def make_record(**overrides) -> VehicleRecord:
    data = dict(
        vin=VIN,
        make="Toyota",
        model="RAV4",
        year=2020,
        price=15000,
        mileage=60000,
        age_in_years=5,
        mileage_per_year=12000,
        mileage_rating=MileageRating.EXCELLENT,
        state_of_origin="CO",
        current_location="Denver, CO",
        distance_miles=12,
        priority_score=10,
        source_platform="autotrader",
        source_url="https://listings.test/1",
        images_url=["https://listings.test/1.jpg"],
        vin_decode_data={"make": "TOYOTA", "model": "RAV4", "year": 2020},
    )
    data.update(overrides)
    return VehicleRecord(**data)


def _row_count() -> int:
    with session_scope() as session:
        return session.execute(select(func.count()).select_from(models.CuratedListing)).scalar_one()


def test_upsert_inserts_then_updates_in_place():
    start = datetime(2025, 10, 1, 6, 0, tzinfo=timezone.utc)
    store = SqlAlchemyCuratedStore(clock=StepClock(start))

    created = store.upsert(make_record())
    assert created.first_seen_at == start
    assert created.last_updated_at == start

    store.update_review(VIN, {"reviewed_by_user": True, "user_rating": 4, "user_notes": "Call dealer"})

    updated = store.upsert(make_record(price=14500))
    assert _row_count() == 1
    assert updated.price == 14500
    assert updated.first_seen_at == start
    assert updated.last_updated_at == start + timedelta(hours=1)
    assert updated.reviewed_by_user is True
    assert updated.user_rating == 4
    assert updated.user_notes == "Call dealer"


def test_repeated_upsert_is_idempotent():
    store = SqlAlchemyCuratedStore()
    store.upsert(make_record())
    store.upsert(make_record())
    assert _row_count() == 1
    fetched = store.get_by_vin(VIN.lower())
    assert fetched.fingerprint() == make_record().fingerprint()
    assert fetched.mileage_rating is MileageRating.EXCELLENT
    assert fetched.images_url == ["https://listings.test/1.jpg"]


def test_get_by_vin_missing_returns_none():
    assert SqlAlchemyCuratedStore().get_by_vin("1HGCM82633A004352") is None


def test_query_applies_criteria():
    store = SqlAlchemyCuratedStore()
    store.upsert(make_record())
    store.upsert(make_record(vin="2HKRW2H85KH654321", make="Honda", model="CR-V", year=2019, price=17500))
    store.upsert(make_record(vin="4T1B11HK5KU765432", model="Camry", year=2017, price=12000, mileage=101000))

    assert len(store.query()) == 3
    assert {r.vin for r in store.query({"make": "Toyota"})} == {VIN, "4T1B11HK5KU765432"}
    assert [r.model for r in store.query({"price_min": 13000, "price_max": 16000})] == ["RAV4"]
    assert [r.model for r in store.query({"mileage_max": 70000, "year_min": 2020})] == ["RAV4"]
    assert len(store.query({"limit": 2})) == 2


def test_update_review_validates_fields():
    store = SqlAlchemyCuratedStore()
    store.upsert(make_record())
    with pytest.raises(ValueError):
        store.update_review(VIN, {"price": 1})
    assert store.update_review("1HGCM82633A004352", {"reviewed_by_user": True}) is None


def test_run_summaries_are_appended():
    store = SqlAlchemyCuratedStore()
    first = RunSummary(source_name="file:listings.json")
    first.fetched = 3
    first.passed_hard_filter = 2
    first.stored = 2
    first.record_error(ERROR_STAGE_VIN, "timed out", vin=VIN)
    first.advance(PipelineStage.LOGGED)
    first.finalize(RunStatus.COMPLETED)
    store.insert_run_summary(first)

    second = RunSummary(started_at=first.started_at + timedelta(minutes=5))
    second.finalize(RunStatus.INCOMPLETE, incomplete=True)
    store.insert_run_summary(second)

    runs = store.list_run_summaries()
    assert [run["run_id"] for run in runs] == [second.run_id, first.run_id]
    assert runs[0]["incomplete"] is True
    assert runs[1]["stats"]["fetched"] == 3
    assert runs[1]["stats"]["stored"] == 2
    assert runs[1]["stats"]["errors"] == 1
    assert runs[1]["errors"] == [{"stage": "vin_validation", "message": "timed out", "vin": VIN}]


@contextmanager
def unavailable_scope():
    raise OperationalError("SELECT", {}, Exception("database is locked"))
    yield


def test_database_errors_surface_as_store_errors():
    store = SqlAlchemyCuratedStore(session_factory=unavailable_scope)
    with pytest.raises(StoreError, match="Failed to read"):
        store.get_by_vin(VIN)
    with pytest.raises(StoreError):
        store.query({"make": "Toyota"})
    with pytest.raises(StoreError):
        store.update_review(VIN, {"user_rating": 4})
    with pytest.raises(StoreError):
        store.upsert(make_record())
