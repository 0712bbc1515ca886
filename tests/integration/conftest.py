import pytest
from fastapi.testclient import TestClient

from reporting_api.main import app
from reporting_api import dependencies
from reporting_api.settings import get_settings

SAMPLE_CSV = (
    "date,sessions,users,pageviews,page_path,page_views\n"
    "2025-12-01,120,80,300,/home,150\n"
    "2025-12-02,100,70,250,/pricing,90\n"
    "2025-12-03,90,60,200,/home,110\n"
)


@pytest.fixture
def api(test_settings, kv, object_store, rate_storage):
    """TestClient wired to fresh in-memory stores."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[dependencies.get_kv_store] = lambda: kv
    app.dependency_overrides[dependencies.get_object_store] = lambda: object_store
    app.dependency_overrides[dependencies.get_rate_limit_storage] = lambda: rate_storage
    return TestClient(app)


@pytest.fixture
def agency(api):
    """Register an agency; returns (agency_id, api_key)."""
    resp = api.post("/api/agency/register", json={"name": "Acme Digital", "billingEmail": "billing@acme.test"})
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]["agency"]
    return data["id"], data["apiKey"]


@pytest.fixture
def client_id(api, agency):
    _, api_key = agency
    resp = api.post(
        "/api/client",
        headers={"x-api-key": api_key},
        json={"name": "Bakery Co", "email": "owner@bakery.test"},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["client"]["id"]


@pytest.fixture
def uploaded(api, agency, client_id):
    """Client with GA4 data, ready for report sends."""
    _, api_key = agency
    resp = api.post(
        f"/api/client/{client_id}/ga4-csv",
        headers={"x-api-key": api_key, "content-type": "text/csv"},
        content=SAMPLE_CSV,
    )
    assert resp.status_code == 200, resp.text
    return client_id
