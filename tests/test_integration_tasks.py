"""Integration tests for the task endpoints and role-scoped visibility."""

import pytest
from fastapi.testclient import TestClient

from assigna import app as app_module
from assigna.service.runtime import get_runtime


@pytest.fixture
def client():
    return TestClient(app_module.app)


def _bearer(client, username, role):
    response = client.post(
        "/v1/user/register",
        json={
            "userName": username,
            "email": f"{username}@example.com",
            "password": "pw#1abc",
            "role": role,
        },
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def team(client):
    lead = _bearer(client, "alice", "team-lead")
    member = _bearer(client, "bob", "team-member")
    other = _bearer(client, "carol", "team-member")

    store = get_runtime().store
    bob = store.get_user_by_username("bob")
    carol = store.get_user_by_username("carol")
    store.create_task(bob.id, "Write report", priority="High", category="Docs")
    store.create_task(bob.id, "File expenses", priority="Low", pending=False, complete=True)
    store.create_task(carol.id, "Review PR")
    return lead, member, other


class TestTaskListing:
    def test_lead_sees_all_tasks(self, client, team):
        lead, _, _ = team
        response = client.get("/v1/tasks", headers=lead)

        assert response.status_code == 200
        assert [t["title"] for t in response.json()["data"]] == [
            "Write report",
            "File expenses",
            "Review PR",
        ]

    def test_member_sees_own_tasks(self, client, team):
        _, member, _ = team
        data = client.get("/v1/tasks", headers=member).json()["data"]

        assert {t["username"] for t in data} == {"bob"}
        assert len(data) == 2

    def test_filters(self, client, team):
        lead, _, _ = team
        pending = client.get("/v1/tasks", params={"status": "pending"}, headers=lead)
        high = client.get("/v1/tasks", params={"priority": "high"}, headers=lead)

        assert len(pending.json()["data"]) == 2
        assert [t["title"] for t in high.json()["data"]] == ["Write report"]

    def test_unknown_filter_is_400(self, client, team):
        lead, _, _ = team
        response = client.get("/v1/tasks", params={"status": "archived"}, headers=lead)
        assert response.status_code == 400
        assert response.json()["error"]["details"]["allowed"] == ["pending", "complete"]


class TestTaskInfo:
    def test_owner_can_read(self, client, team):
        _, member, _ = team
        response = client.get("/v1/tasks/1", headers=member)
        assert response.status_code == 200
        assert response.json()["data"]["category"] == "Docs"

    def test_other_member_gets_404(self, client, team):
        _, _, other = team
        response = client.get("/v1/tasks/1", headers=other)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    def test_invalid_id_is_422(self, client, team):
        lead, _, _ = team
        assert client.get("/v1/tasks/0", headers=lead).status_code == 422


class TestCountsAndMembers:
    def test_counts_are_scoped(self, client, team):
        lead, _, other = team
        lead_counts = client.get("/v1/tasks/count", headers=lead).json()["data"]
        other_counts = client.get("/v1/tasks/count", headers=other).json()["data"]

        assert lead_counts == {
            "all": 3,
            "pending": 2,
            "complete": 1,
            "high": 1,
            "medium": 1,
            "low": 1,
        }
        assert other_counts["all"] == 1

    def test_members_listing_requires_lead(self, client, team):
        lead, member, _ = team
        forbidden = client.get("/v1/user/members", headers=member)
        allowed = client.get("/v1/user/members", headers=lead)

        assert forbidden.status_code == 403
        assert forbidden.json()["error"]["code"] == "forbidden"
        assert [m["username"] for m in allowed.json()["data"]] == ["bob", "carol"]


class TestHealth:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json()["checks"] == {"store": "ok"}
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_healthz_reports_failure(self, client, monkeypatch):
        def broken():
            raise OSError("disk gone")

        monkeypatch.setattr(get_runtime().store, "healthcheck", broken)
        response = client.get("/healthz")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
