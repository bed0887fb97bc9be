from __future__ import annotations

from typing import Iterable, List

from assigna.service.tokens import Claims
from assigna.storage.models import Task


def can_see(task: Task, claims: Claims) -> bool:
    return claims.is_lead or task.username == claims.name


def visible(tasks: Iterable[Task], claims: Claims) -> List[Task]:
    """Leads see every task; members only the tasks assigned to their username."""
    return [task for task in tasks if can_see(task, claims)]
