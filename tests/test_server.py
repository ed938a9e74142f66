import time
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from backend.pipeline_tracker.config import PipelineConfig
from backend.pipeline_tracker.repository import SQLApplicationRepository
from backend.pipeline_tracker.server import create_app

OWNER_A = {"X-Recruiter-Id": "owner-a"}
OWNER_B = {"X-Recruiter-Id": "owner-b"}


@pytest.fixture
def client(config, repository):
    return TestClient(create_app(config, repository))


def _create(client, headers=OWNER_A, **overrides):
    body = {"candidateName": "Mary Jackson", "role": "Platform Engineer", "yearsOfExperience": 4}
    body.update(overrides)
    response = client.post("/api/applications", json=body, headers=headers)
    assert response.status_code == 201
    return response.json()["data"]["application"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_without_principal_are_unauthorized(client):
    response = client.get("/api/applications")

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_create_and_fetch_application(client):
    created = _create(client, notes="Referred")

    assert created["status"] == "applied"
    assert created["recruiter"] == "owner-a"
    fetched = client.get(f"/api/applications/{created['id']}", headers=OWNER_A).json()
    assert fetched == {"success": True, "data": {"application": created}}


def test_create_validation_errors_use_envelope(client):
    response = client.post("/api/applications", json={"candidateName": "No Role"}, headers=OWNER_A)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert {"role", "yearsOfExperience"} <= {error["field"] for error in body["errors"]}


def test_status_move_and_other_owner_isolation(client):
    created = _create(client)

    response = client.patch(f"/api/applications/{created['id']}/status", json={"status": "offer"}, headers=OWNER_A)
    assert response.status_code == 200
    moved = response.json()["data"]["application"]
    assert moved["status"] == "offer"
    assert datetime.fromisoformat(moved["lastUpdated"]) > datetime.fromisoformat(created["lastUpdated"])

    foreign = client.patch(f"/api/applications/{created['id']}/status", json={"status": "rejected"}, headers=OWNER_B)
    assert foreign.status_code == 404
    assert foreign.json() == {"success": False, "message": "Application not found"}
    assert client.get(f"/api/applications/{created['id']}", headers=OWNER_B).status_code == 404


def test_status_move_with_unknown_status(client):
    created = _create(client)

    response = client.patch(f"/api/applications/{created['id']}/status", json={"status": "hired"}, headers=OWNER_A)
    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "status"


def test_update_and_delete(client):
    created = _create(client)

    updated = client.put(f"/api/applications/{created['id']}", json={"notes": "Second round"}, headers=OWNER_A)
    assert updated.json()["data"]["application"]["notes"] == "Second round"

    assert client.delete(f"/api/applications/{created['id']}", headers=OWNER_B).status_code == 404
    deleted = client.delete(f"/api/applications/{created['id']}", headers=OWNER_A)
    assert deleted.json() == {"success": True, "message": "Application deleted successfully"}
    assert client.get(f"/api/applications/{created['id']}", headers=OWNER_A).status_code == 404


def test_list_applications_with_pagination(client):
    for index in range(3):
        _create(client, candidateName=f"Candidate {index}")
    _create(client, headers=OWNER_B)

    params = {"limit": 2, "sortBy": "candidateName", "sortOrder": "asc"}
    body = client.get("/api/applications", params=params, headers=OWNER_A).json()

    assert [item["candidateName"] for item in body["data"]["applications"]] == ["Candidate 0", "Candidate 1"]
    assert body["data"]["pagination"] == {"currentPage": 1, "totalPages": 2, "totalItems": 3, "itemsPerPage": 2}


def test_list_rejects_oversized_pages(client):
    response = client.get("/api/applications", params={"limit": 500}, headers=OWNER_A)
    assert response.status_code == 400


def test_list_rejects_zero_limit(client):
    response = client.get("/api/applications", params={"limit": 0}, headers=OWNER_A)

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "limit"


def test_dashboard_endpoint(client, funnel_scenario):
    body = client.get("/api/analytics/dashboard", headers=OWNER_A).json()

    assert body["success"] is True
    assert body["data"]["summary"]["totalCandidates"] == 10
    assert body["data"]["conversionRates"]["appliedToInterview"] == 60.0
    assert body["data"]["refreshIntervalSeconds"] == 30


def test_timeline_endpoint(client, funnel_scenario):
    body = client.get("/api/analytics/timeline", params={"period": "Daily"}, headers=OWNER_A).json()

    assert body["data"]["period"] == "daily"
    assert len(body["data"]["timelineData"]) == 10
    assert body["data"]["timelineData"][0]["period"] == {"date": "2024-03-01"}

    invalid = client.get("/api/analytics/timeline", params={"period": "hourly"}, headers=OWNER_A)
    assert invalid.status_code == 400


def test_timeline_echoes_resolved_period(client, funnel_scenario):
    body = client.get("/api/analytics/timeline", params={"period": ""}, headers=OWNER_A).json()

    assert body["data"]["period"] == "monthly"
    assert body["data"]["timelineData"][0]["period"] == {"month": 3, "year": 2024}


def test_role_and_experience_endpoints(client, funnel_scenario):
    roles = client.get("/api/analytics/roles", params={"role": "data"}, headers=OWNER_A).json()
    assert [item["role"] for item in roles["data"]["roleAnalytics"]] == ["Data Analyst"]

    experience = client.get("/api/analytics/experience", headers=OWNER_A).json()
    buckets = experience["data"]["experienceDistribution"]
    assert len(buckets) == 9
    assert buckets[0]["candidates"] == ["Candidate 0"]


class BrokenRepository(SQLApplicationRepository):
    def load(self, owner_id, query=None):
        raise RuntimeError("unexpected failure")


def test_unexpected_errors_use_envelope(config, engine):
    client = TestClient(create_app(config, BrokenRepository(engine)), raise_server_exceptions=False)

    response = client.get("/api/analytics/timeline", headers=OWNER_A)

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "Internal server error"}


class SlowRepository(SQLApplicationRepository):
    def load(self, owner_id, query=None):
        time.sleep(0.5)
        return super().load(owner_id, query)


def test_slow_store_yields_retryable_503(engine):
    config = PipelineConfig(database_url="sqlite://", query_timeout_seconds=0.05)
    client = TestClient(create_app(config, SlowRepository(engine)))

    response = client.get("/api/analytics/dashboard", headers=OWNER_A)

    assert response.status_code == 503
    assert response.json()["retryable"] is True
