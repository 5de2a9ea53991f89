import pytest
from fastapi.testclient import TestClient

from backend.app.api.deps import get_pipeline_factory, get_settings
from backend.app.api.main import app
from backend.app.core.settings import Settings
from backend.app.services.curated_store import SqlAlchemyCuratedStore
from backend.app.services.listing_source import ListingSourceError
from backend.app.services.pipeline import CurationPipeline

client = TestClient(app)

pytestmark = pytest.mark.usefixtures("clean_db")

SECRET = "s3cret"

ROWS = [
    {
        "vin": "JTMRFREV5JJ123456",
        "make": "Toyota",
        "model": "RAV4",
        "year": 2020,
        "price": 15000,
        "mileage": 60000,
        "title_status": "clean",
        "accident_count": 0,
        "owner_count": 1,
    },
    {
        "vin": "JTMRFREV5JJ999999",
        "make": "Toyota",
        "model": "RAV4",
        "year": 2020,
        "price": 25000,
        "mileage": 60000,
        "title_status": "clean",
        "accident_count": 0,
        "owner_count": 1,
    },
]


class FakeSource:
    name = "fake"
    cost = 0.0

    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error

    async def fetch_raw_listings(self, criteria=None):
        if self.error:
            raise self.error
        return [dict(row) for row in self.rows]


@pytest.fixture
def overrides():
    state = {"source": FakeSource(ROWS)}

    def factory():
        return CurationPipeline(state["source"], SqlAlchemyCuratedStore(), year_now=2025)

    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret=SECRET)
    app.dependency_overrides[get_pipeline_factory] = lambda: factory
    yield state
    app.dependency_overrides.clear()


def test_trigger_requires_secret(overrides):
    assert client.post("/pipeline/runs").status_code == 401
    assert client.post("/pipeline/runs", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_trigger_refused_when_secret_unset(overrides):
    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret=None)
    response = client.post("/pipeline/runs", headers={"Authorization": "Bearer anything"})
    assert response.status_code == 401


@pytest.mark.parametrize("header", [f"Bearer {SECRET}", SECRET])
def test_trigger_runs_pipeline(overrides, header):
    response = client.post("/pipeline/runs", headers={"Authorization": header})
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "completed"
    assert payload["stats"]["fetched"] == 2
    assert payload["stats"]["stored"] == 1
    assert payload["rejections"] == {"price_range": 1}

    runs = client.get("/pipeline/runs").json()["runs"]
    assert [run["run_id"] for run in runs] == [payload["run_id"]]


def test_fetch_failure_returns_500_and_logs_run(overrides):
    overrides["source"] = FakeSource(error=ListingSourceError("feed down"))
    response = client.post("/pipeline/runs", headers={"Authorization": f"Bearer {SECRET}"})
    assert response.status_code == 500
    detail = response.json()["detail"]
    assert detail["stage"] == "fetch"

    runs = client.get("/pipeline/runs").json()["runs"]
    assert runs[0]["status"] == "failed"
    assert runs[0]["run_id"] == detail["run_id"]


def test_status_reports_configuration(overrides):
    payload = client.get("/pipeline/status").json()
    assert payload["cron_secret_configured"] is True
    assert payload["scoring_strategy"] == "model_priority"
    assert payload["running"] is False


def test_list_runs_validates_limit():
    assert client.get("/pipeline/runs", params={"limit": 0}).status_code == 400
