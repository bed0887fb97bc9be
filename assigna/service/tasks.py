from __future__ import annotations

from typing import Dict, List, Optional

from assigna.service.errors import NotFoundError, ValidationError
from assigna.service.sessions import IdentityStore
from assigna.service.tokens import Claims
from assigna.service.visibility import can_see, visible
from assigna.storage.models import TASK_PRIORITIES, Task, User

TASK_STATUSES = ("pending", "complete")


class TaskService:
    """Read-side task queries; every result passes through the role filter."""

    def __init__(self, store: IdentityStore) -> None:
        self.store = store

    def list_tasks(
        self,
        claims: Claims,
        status: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> List[Task]:
        tasks = visible(self.store.list_tasks(), claims)
        if status:
            normalized = status.strip().lower()
            if normalized not in TASK_STATUSES:
                raise ValidationError(
                    "Unknown task status.",
                    detail={"status": status, "allowed": list(TASK_STATUSES)},
                )
            if normalized == "pending":
                tasks = [t for t in tasks if t.pending]
            else:
                tasks = [t for t in tasks if t.complete]
        if priority:
            wanted = priority.strip().capitalize()
            if wanted not in TASK_PRIORITIES:
                raise ValidationError(
                    "Unknown task priority.",
                    detail={"priority": priority, "allowed": list(TASK_PRIORITIES)},
                )
            tasks = [t for t in tasks if t.priority == wanted]
        return tasks

    def task_info(self, claims: Claims, task_id: int) -> Task:
        task = self.store.get_task(task_id)
        # hidden tasks are indistinguishable from missing ones
        if not task or not can_see(task, claims):
            raise NotFoundError("Task is not found.", detail={"task_id": task_id})
        return task

    def task_counts(self, claims: Claims) -> Dict[str, int]:
        tasks = visible(self.store.list_tasks(), claims)
        return {
            "all": len(tasks),
            "pending": sum(1 for t in tasks if t.pending),
            "complete": sum(1 for t in tasks if t.complete),
            "high": sum(1 for t in tasks if t.priority == "High"),
            "medium": sum(1 for t in tasks if t.priority == "Medium"),
            "low": sum(1 for t in tasks if t.priority == "Low"),
        }

    def team_members(self) -> List[User]:
        return self.store.list_members()
