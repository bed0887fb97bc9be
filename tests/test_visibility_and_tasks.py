"""Role-scoped task visibility and the read-side task queries."""

from datetime import datetime, timedelta, timezone

import pytest

from assigna.service.errors import NotFoundError, ValidationError
from assigna.service.tasks import TaskService
from assigna.service.tokens import Claims, Role
from assigna.service.visibility import can_see, visible


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _claims(name, role):
    return Claims(
        name=name,
        email=f"{name}@example.com",
        role=role,
        jti="jti",
        issued_at=NOW,
        expires_at=NOW + timedelta(minutes=30),
    )


@pytest.fixture
def team(memory_store):
    alice = memory_store.create_user("alice", "alice@example.com", is_lead=True)
    bob = memory_store.create_user("bob", "bob@example.com")
    carol = memory_store.create_user("carol", "carol@example.com")
    memory_store.create_task(bob.id, "Write report", priority="High")
    memory_store.create_task(bob.id, "File expenses", priority="Low", pending=False, complete=True)
    memory_store.create_task(carol.id, "Review PR")
    memory_store.create_task(alice.id, "Plan sprint", priority="High")
    return alice, bob, carol


@pytest.fixture
def service(memory_store):
    return TaskService(memory_store)


class TestVisibility:
    def test_lead_sees_everything(self, memory_store, team):
        lead = _claims("alice", Role.LEAD)
        assert len(visible(memory_store.list_tasks(), lead)) == 4

    def test_member_sees_only_own_tasks(self, memory_store, team):
        bob = _claims("bob", Role.MEMBER)
        titles = [t.title for t in visible(memory_store.list_tasks(), bob)]
        assert titles == ["Write report", "File expenses"]

    def test_member_without_tasks_sees_nothing(self, memory_store, team):
        memory_store.create_user("dave", "dave@example.com")
        assert visible(memory_store.list_tasks(), _claims("dave", Role.MEMBER)) == []

    def test_can_see_matches_on_assigned_username(self, memory_store, team):
        task = memory_store.get_task(3)
        assert can_see(task, _claims("carol", Role.MEMBER))
        assert not can_see(task, _claims("bob", Role.MEMBER))


class TestTaskService:
    def test_status_filter(self, service, team):
        lead = _claims("alice", Role.LEAD)
        assert [t.title for t in service.list_tasks(lead, status="complete")] == ["File expenses"]
        assert len(service.list_tasks(lead, status="Pending")) == 3

    def test_priority_filter_is_scoped(self, service, team):
        bob = _claims("bob", Role.MEMBER)
        assert [t.title for t in service.list_tasks(bob, priority="high")] == ["Write report"]

    @pytest.mark.parametrize("kwargs", [{"status": "archived"}, {"priority": "urgent"}])
    def test_unknown_filter_values(self, service, team, kwargs):
        with pytest.raises(ValidationError):
            service.list_tasks(_claims("alice", Role.LEAD), **kwargs)

    def test_task_info_for_owner(self, service, team):
        task = service.task_info(_claims("bob", Role.MEMBER), 1)
        assert task.title == "Write report"
        assert task.username == "bob"

    def test_hidden_task_looks_missing(self, service, team):
        with pytest.raises(NotFoundError):
            service.task_info(_claims("bob", Role.MEMBER), 3)
        with pytest.raises(NotFoundError):
            service.task_info(_claims("alice", Role.LEAD), 99)

    def test_counts_follow_visibility(self, service, team):
        assert service.task_counts(_claims("alice", Role.LEAD)) == {
            "all": 4,
            "pending": 3,
            "complete": 1,
            "high": 2,
            "medium": 1,
            "low": 1,
        }
        assert service.task_counts(_claims("bob", Role.MEMBER))["all"] == 2

    def test_team_members_excludes_leads(self, service, team):
        assert [u.username for u in service.team_members()] == ["bob", "carol"]
