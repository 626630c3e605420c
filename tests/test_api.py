"""
HTTP API over an offline service (mock resolver + fetchers, in-memory DB).
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.routes import get_service
from conftest import run
from utils.pipeline import build_service


@pytest.fixture
def service(session_factory):
    service = build_service(mock=True, session_factory=session_factory, pacing=False)
    yield service
    run(service.aclose())


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def property_id(client):
    resp = client.post("/api/v1/properties", json={"name": "Hotel Zetta", "city": "San Francisco", "state": "CA"})
    assert resp.status_code == 201
    return resp.json()["id"]


class TestServiceWiring:
    def test_mock_service_shares_and_closes_one_client(self, session_factory):
        service = build_service(mock=True, session_factory=session_factory, pacing=False)
        assert service.client is not None
        assert service.resolver.client is service.client
        assert service.insights.gateway.client is service.client

        run(service.aclose())
        assert service.client.is_closed


class TestSystem:
    def test_health(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"


class TestProperties:
    def test_create_and_fetch(self, client, property_id):
        resp = client.get(f"/api/v1/properties/{property_id}")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Hotel Zetta"

    def test_unknown_property(self, client):
        assert client.get("/api/v1/properties/nope").status_code == 404

    def test_update_and_delete(self, client, property_id):
        resp = client.patch(f"/api/v1/properties/{property_id}", json={"kasa_url": "https://kasa.com/zetta"})
        assert resp.json()["kasa_url"] == "https://kasa.com/zetta"
        assert client.delete(f"/api/v1/properties/{property_id}").status_code == 204
        assert client.get("/api/v1/properties").json() == []

    def test_empty_update_rejected(self, client, property_id):
        assert client.patch(f"/api/v1/properties/{property_id}", json={}).status_code == 400


class TestRefresh:
    def test_refresh_all_then_read_scores(self, client, property_id):
        resp = client.post("/api/v1/refresh/all", json={})
        assert resp.status_code == 202

        state = client.get("/api/v1/refresh/state").json()
        assert state["phase"] == "complete"
        assert state["summary"]["fetch_attempts"] == 4
        assert state["summary"]["failed"] == 0

        scores = client.get("/api/v1/scores").json()
        assert [row["property_id"] for row in scores] == [property_id]
        assert client.get("/api/v1/refresh/failed-count").json() == {"failed_count": 0}

        aliases = client.get(f"/api/v1/properties/{property_id}/aliases").json()
        assert len(aliases) == 4
        assert all(a["resolution_status"] == "resolved" for a in aliases)

    def test_refresh_cell(self, client, property_id):
        resp = client.post(f"/api/v1/refresh/properties/{property_id}/google")
        assert resp.status_code == 200
        assert resp.json()["status"] in ("complete", "not_listed")

    def test_unknown_platform(self, client, property_id):
        assert client.post(f"/api/v1/refresh/properties/{property_id}/yelp").status_code == 400

    def test_retry_without_failures(self, client):
        assert client.post("/api/v1/refresh/retry-failed").json()["status"] == "noop"

    def test_export_csv(self, client, property_id):
        client.post("/api/v1/refresh/all", json={})
        resp = client.get("/api/v1/export/scores.csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.text.splitlines()[0].startswith("name,city,state")


class TestResolution:
    def test_manual_alias(self, client, property_id):
        url = "https://www.booking.com/hotel/us/zetta.html"
        resp = client.put(f"/api/v1/properties/{property_id}/aliases/booking", json={"identifier": url})
        assert resp.status_code == 200
        assert resp.json()["resolution_status"] == "resolved"
        assert client.get(f"/api/v1/properties/{property_id}").json()["booking_url"] == url

    def test_resolve(self, client, property_id):
        resp = client.post(f"/api/v1/properties/{property_id}/resolve", json={"platforms": ["google"]})
        assert resp.status_code == 200
        assert resp.json()[0]["platform_id"] == f"mock-{property_id}"


class TestGroupsAndHeal:
    def test_group_metrics(self, client, property_id):
        group = client.post("/api/v1/groups", json={"name": "West", "property_ids": [property_id]}).json()
        metrics = client.get(f"/api/v1/groups/{group['id']}/metrics").json()
        assert metrics["total_properties"] == 1
        assert metrics["avg_score"] is None
        assert client.get("/api/v1/groups").json()[0]["name"] == "West"

    def test_group_with_unknown_member(self, client):
        assert client.post("/api/v1/groups", json={"name": "X", "property_ids": ["nope"]}).status_code == 404

    def test_auto_heal(self, client, property_id):
        assert client.get("/api/v1/auto-heal").status_code == 404
        resp = client.post("/api/v1/auto-heal")
        assert resp.status_code == 202
        assert resp.json()["status"] == "accepted"

        progress = client.get("/api/v1/auto-heal").json()
        assert progress["total"] == 4
        assert progress["failed"] == 0
        assert len(client.get("/api/v1/debug-logs").json()) == 4

    def test_first_scores_read_starts_one_sweep(self, client, service, property_id):
        sweep = service.auto_heal
        original_run = sweep.run
        runs = []

        async def counting_run(data=None):
            runs.append(data)
            return await original_run(data)

        sweep.run = counting_run
        client.get("/api/v1/scores")
        client.get("/api/v1/scores")

        assert len(runs) == 1
        assert sweep.has_run
        assert client.get("/api/v1/auto-heal").json()["total"] == 4
