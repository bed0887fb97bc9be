from __future__ import annotations

import base64
import json
import threading
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from assigna.logging import get_logger
from assigna.storage.errors import ConstraintViolation
from assigna.storage.models import User, Task

_USER_DATETIME_FIELDS = (
    "session_expires_at",
    "refresh_expires_at",
    "reset_expires_at",
    "created_at",
)
_USER_BYTES_FIELDS = ("password_hash", "password_salt")


class MemoryStore:
    """In-process store backed by a JSON state file.

    Every read-modify-write runs under ``_data_lock`` so the compare-and-swap
    operations (``rotate_session``, ``consume_reset_token``) are atomic with
    respect to concurrent requests in the same process.
    """

    def __init__(self, fs_root: str = "/tmp/assigna") -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.tasks: Dict[int, Task] = {}
        self._user_seq: int = 1
        self._task_seq: int = 1
        # RLock so helpers can re-enter from locked public methods
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    # users
    def create_user(
        self,
        username: str,
        email: str,
        *,
        display_name: Optional[str] = None,
        password_hash: Optional[bytes] = None,
        password_salt: Optional[bytes] = None,
        password_algo: Optional[str] = None,
        is_lead: bool = False,
        given_name: Optional[str] = None,
        family_name: Optional[str] = None,
        picture: Optional[str] = None,
        locale: Optional[str] = None,
        email_verified: bool = False,
    ) -> User:
        with self._data_lock:
            for existing in self.users.values():
                if existing.email.lower() == email.lower():
                    raise ConstraintViolation("email already exists", {"field": "email"})
                if existing.username.lower() == username.lower():
                    raise ConstraintViolation(
                        "username already exists", {"field": "username"}
                    )
            user = User(
                id=self._user_seq,
                username=username,
                email=email,
                display_name=display_name,
                password_hash=password_hash,
                password_salt=password_salt,
                password_algo=password_algo,
                is_lead=is_lead,
                given_name=given_name,
                family_name=family_name,
                picture=picture,
                locale=locale,
                email_verified=email_verified,
            )
            self._user_seq += 1
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def _find_user(self, predicate) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if predicate(u)), None)

    def get_user_by_email(self, email: str) -> Optional[User]:
        needle = email.lower()
        return self._find_user(lambda u: u.email.lower() == needle)

    def get_user_by_username(self, username: str) -> Optional[User]:
        needle = username.lower()
        return self._find_user(lambda u: u.username.lower() == needle)

    def get_user_by_refresh_token(self, refresh_token: str) -> Optional[User]:
        if not refresh_token:
            return None
        return self._find_user(lambda u: u.refresh_token == refresh_token)

    def get_user_by_reset_token(self, reset_token: str) -> Optional[User]:
        if not reset_token:
            return None
        return self._find_user(lambda u: u.reset_token == reset_token)

    def list_users(self) -> List[User]:
        with self._data_lock:
            return sorted(self.users.values(), key=lambda u: u.id)

    def list_members(self) -> List[User]:
        return [u for u in self.list_users() if not u.is_lead]

    # sessions
    def store_session(
        self,
        user_id: int,
        *,
        session_token: str,
        session_expires_at: datetime,
        refresh_token: str,
        refresh_expires_at: datetime,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.session_token = session_token
            user.session_expires_at = session_expires_at
            user.refresh_token = refresh_token
            user.refresh_expires_at = refresh_expires_at
            self._persist_state()
            return user

    def rotate_session(
        self,
        user_id: int,
        expected_refresh_token: str,
        *,
        session_token: str,
        session_expires_at: datetime,
        refresh_token: str,
        refresh_expires_at: datetime,
    ) -> Optional[User]:
        """Replace the token pair only if ``expected_refresh_token`` is still current."""
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or user.refresh_token != expected_refresh_token:
                return None
            return self.store_session(
                user_id,
                session_token=session_token,
                session_expires_at=session_expires_at,
                refresh_token=refresh_token,
                refresh_expires_at=refresh_expires_at,
            )

    # password reset
    def set_reset_token(
        self, user_id: int, reset_token: str, reset_expires_at: datetime
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.reset_token = reset_token
            user.reset_expires_at = reset_expires_at
            self._persist_state()
            return user

    def consume_reset_token(
        self,
        user_id: int,
        expected_reset_token: str,
        *,
        password_hash: bytes,
        password_salt: bytes,
        password_algo: str,
    ) -> Optional[User]:
        """Swap the credential and clear the reset fields in one step."""
        with self._data_lock:
            user = self.users.get(user_id)
            if not user or user.reset_token != expected_reset_token:
                return None
            user.password_hash = password_hash
            user.password_salt = password_salt
            user.password_algo = password_algo
            user.reset_token = None
            user.reset_expires_at = None
            self._persist_state()
            return user

    # tasks
    def create_task(
        self,
        owner_user_id: int,
        title: str,
        *,
        note: Optional[str] = None,
        deadline: Optional[datetime] = None,
        category: Optional[str] = None,
        priority: str = "Medium",
        pending: bool = True,
        complete: bool = False,
        user_note: Optional[str] = None,
    ) -> Task:
        with self._data_lock:
            owner = self.users.get(owner_user_id)
            if not owner:
                raise ConstraintViolation(
                    "task owner does not exist", {"field": "owner_user_id"}
                )
            task = Task(
                id=self._task_seq,
                title=title,
                owner_user_id=owner_user_id,
                username=owner.username,
                note=note,
                deadline=deadline,
                category=category,
                priority=priority,
                pending=pending,
                complete=complete,
                user_note=user_note,
            )
            self._task_seq += 1
            self.tasks[task.id] = task
            self._persist_state()
            return task

    def get_task(self, task_id: int) -> Optional[Task]:
        with self._data_lock:
            return self.tasks.get(task_id)

    def list_tasks(self) -> List[Task]:
        with self._data_lock:
            return sorted(self.tasks.values(), key=lambda t: t.id)

    def healthcheck(self) -> bool:
        return self._state_path().parent.is_dir()

    def close(self) -> None:
        # every mutation is already flushed to disk
        self.logger.debug("memory_store_closed", users=len(self.users))

    # persistence
    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    @staticmethod
    def _serialize_bytes(raw: Optional[bytes]) -> Optional[str]:
        return base64.b64encode(raw).decode("ascii") if raw is not None else None

    @staticmethod
    def _deserialize_bytes(raw: Optional[str]) -> Optional[bytes]:
        return base64.b64decode(raw) if raw is not None else None

    def _serialize_user(self, user: User) -> dict:
        data = asdict(user)
        for key in _USER_DATETIME_FIELDS:
            data[key] = self._serialize_datetime(data[key])
        for key in _USER_BYTES_FIELDS:
            data[key] = self._serialize_bytes(data[key])
        return data

    def _deserialize_user(self, data: Dict[str, Any]) -> User:
        values = dict(data)
        for key in _USER_DATETIME_FIELDS:
            values[key] = self._deserialize_datetime(values.get(key))
        for key in _USER_BYTES_FIELDS:
            values[key] = self._deserialize_bytes(values.get(key))
        return User(**values)

    def _serialize_task(self, task: Task) -> dict:
        data = asdict(task)
        data["deadline"] = self._serialize_datetime(task.deadline)
        data["created_at"] = self._serialize_datetime(task.created_at)
        return data

    def _deserialize_task(self, data: Dict[str, Any]) -> Task:
        values = dict(data)
        values["deadline"] = self._deserialize_datetime(values.get("deadline"))
        values["created_at"] = self._deserialize_datetime(values.get("created_at"))
        return Task(**values)

    def _persist_state(self) -> None:
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "tasks": [self._serialize_task(t) for t in self.tasks.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
        self.tasks = {t["id"]: self._deserialize_task(t) for t in data.get("tasks", [])}
        self._user_seq = max(self.users, default=0) + 1
        self._task_seq = max(self.tasks, default=0) + 1
        self.logger.info(
            "memory_store_loaded", users=len(self.users), tasks=len(self.tasks)
        )
        return True
