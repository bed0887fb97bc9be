from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    username: str
    email: str
    display_name: Optional[str] = None
    password_hash: Optional[bytes] = None
    password_salt: Optional[bytes] = None
    password_algo: Optional[str] = None
    is_lead: bool = False
    session_token: Optional[str] = None
    session_expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    refresh_expires_at: Optional[datetime] = None
    reset_token: Optional[str] = None
    reset_expires_at: Optional[datetime] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None
    locale: Optional[str] = None
    email_verified: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash and self.password_salt)


@dataclass
class Task:
    id: int
    title: str
    owner_user_id: int
    username: str
    note: Optional[str] = None
    deadline: Optional[datetime] = None
    category: Optional[str] = None
    priority: str = "Medium"
    pending: bool = True
    complete: bool = False
    user_note: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)


TASK_PRIORITIES = ("High", "Medium", "Low")
