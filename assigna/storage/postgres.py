from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from assigna.logging import get_logger
from assigna.storage.errors import ConstraintViolation
from assigna.storage.models import Task, User

_USER_COLUMNS = (
    "id, username, email, display_name, password_hash, password_salt, password_algo, "
    "is_lead, session_token, session_expires_at, refresh_token, refresh_expires_at, "
    "reset_token, reset_expires_at, given_name, family_name, picture, locale, "
    "email_verified, created_at"
)
_TASK_SELECT = (
    "SELECT t.*, u.username FROM task t JOIN app_user u ON u.id = t.owner_user_id"
)

# constraint name -> offending field
_UNIQUE_FIELDS = {
    "app_user_email_key": "email",
    "app_user_email_lower_idx": "email",
    "app_user_username_key": "username",
    "app_user_username_lower_idx": "username",
}


class PostgresStore:
    """Postgres-backed store for accounts and tasks.

    Compare-and-swap updates are single ``UPDATE ... WHERE <token> = %s
    RETURNING`` statements, so concurrent rotations race on the row lock and
    exactly one of them sees a returned row.
    """

    def __init__(self, dsn: str, fs_root: str) -> None:
        self.dsn = dsn
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` and ``task`` tables if they are missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_user (
                    id BIGSERIAL PRIMARY KEY,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL,
                    display_name TEXT,
                    password_hash BYTEA,
                    password_salt BYTEA,
                    password_algo TEXT,
                    is_lead BOOLEAN NOT NULL DEFAULT FALSE,
                    session_token TEXT,
                    session_expires_at TIMESTAMPTZ,
                    refresh_token TEXT,
                    refresh_expires_at TIMESTAMPTZ,
                    reset_token TEXT,
                    reset_expires_at TIMESTAMPTZ,
                    given_name TEXT,
                    family_name TEXT,
                    picture TEXT,
                    locale TEXT,
                    email_verified BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_lower_idx ON app_user (lower(email))"
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS app_user_username_lower_idx ON app_user (lower(username))"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS app_user_refresh_token_idx ON app_user (refresh_token)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS app_user_reset_token_idx ON app_user (reset_token)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS task (
                    id BIGSERIAL PRIMARY KEY,
                    owner_user_id BIGINT NOT NULL REFERENCES app_user(id),
                    title TEXT NOT NULL,
                    note TEXT,
                    deadline TIMESTAMPTZ,
                    category TEXT,
                    priority TEXT NOT NULL DEFAULT 'Medium'
                        CHECK (priority IN ('High', 'Medium', 'Low')),
                    pending BOOLEAN NOT NULL DEFAULT TRUE,
                    complete BOOLEAN NOT NULL DEFAULT FALSE,
                    user_note TEXT,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    def _verify_required_schema(self) -> None:
        required_tables = ["app_user", "task"]
        with self._connect() as conn:
            missing_tables = []
            for table in required_tables:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)
        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        def _bytes(value: Any) -> Optional[bytes]:
            return bytes(value) if value is not None else None

        return User(
            id=int(row["id"]),
            username=row["username"],
            email=row["email"],
            display_name=row.get("display_name"),
            password_hash=_bytes(row.get("password_hash")),
            password_salt=_bytes(row.get("password_salt")),
            password_algo=row.get("password_algo"),
            is_lead=bool(row.get("is_lead", False)),
            session_token=row.get("session_token"),
            session_expires_at=row.get("session_expires_at"),
            refresh_token=row.get("refresh_token"),
            refresh_expires_at=row.get("refresh_expires_at"),
            reset_token=row.get("reset_token"),
            reset_expires_at=row.get("reset_expires_at"),
            given_name=row.get("given_name"),
            family_name=row.get("family_name"),
            picture=row.get("picture"),
            locale=row.get("locale"),
            email_verified=bool(row.get("email_verified", False)),
            created_at=row["created_at"],
        )

    @staticmethod
    def _task_from_row(row: Dict[str, Any]) -> Task:
        return Task(
            id=int(row["id"]),
            title=row["title"],
            owner_user_id=int(row["owner_user_id"]),
            username=row["username"],
            note=row.get("note"),
            deadline=row.get("deadline"),
            category=row.get("category"),
            priority=row.get("priority", "Medium"),
            pending=bool(row.get("pending", True)),
            complete=bool(row.get("complete", False)),
            user_note=row.get("user_note"),
            created_at=row["created_at"],
        )

    def _fetch_user(self, where: str, params: tuple) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user WHERE {where}", params
            ).fetchone()
        return self._user_from_row(row) if row else None

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO app_user (
                        username, email, display_name, password_hash, password_salt,
                        password_algo, is_lead, given_name, family_name, picture,
                        locale, email_verified
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}
                    """,
                    (
                        username,
                        email,
                        display_name,
                        password_hash,
                        password_salt,
                        password_algo,
                        is_lead,
                        given_name,
                        family_name,
                        picture,
                        locale,
                        email_verified,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None) or ""
            field = _UNIQUE_FIELDS.get(constraint, "email")
            raise ConstraintViolation(f"{field} already exists", {"field": field})
        return self._user_from_row(row)

    def get_user(self, user_id: int) -> Optional[User]:
        return self._fetch_user("id = %s", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._fetch_user("lower(email) = lower(%s)", (email,))

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._fetch_user("lower(username) = lower(%s)", (username,))

    def get_user_by_refresh_token(self, refresh_token: str) -> Optional[User]:
        if not refresh_token:
            return None
        return self._fetch_user("refresh_token = %s", (refresh_token,))

    def get_user_by_reset_token(self, reset_token: str) -> Optional[User]:
        if not reset_token:
            return None
        return self._fetch_user("reset_token = %s", (reset_token,))

    def list_users(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user ORDER BY id"
            ).fetchall()
        return [self._user_from_row(row) for row in rows]

    def list_members(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user WHERE NOT is_lead ORDER BY id"
            ).fetchall()
        return [self._user_from_row(row) for row in rows]

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
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE app_user
                SET session_token = %s, session_expires_at = %s,
                    refresh_token = %s, refresh_expires_at = %s
                WHERE id = %s
                RETURNING {_USER_COLUMNS}
                """,
                (session_token, session_expires_at, refresh_token, refresh_expires_at, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

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
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE app_user
                SET session_token = %s, session_expires_at = %s,
                    refresh_token = %s, refresh_expires_at = %s
                WHERE id = %s AND refresh_token = %s
                RETURNING {_USER_COLUMNS}
                """,
                (
                    session_token,
                    session_expires_at,
                    refresh_token,
                    refresh_expires_at,
                    user_id,
                    expected_refresh_token,
                ),
            ).fetchone()
        return self._user_from_row(row) if row else None

    # password reset
    def set_reset_token(
        self, user_id: int, reset_token: str, reset_expires_at: datetime
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE app_user SET reset_token = %s, reset_expires_at = %s
                WHERE id = %s
                RETURNING {_USER_COLUMNS}
                """,
                (reset_token, reset_expires_at, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def consume_reset_token(
        self,
        user_id: int,
        expected_reset_token: str,
        *,
        password_hash: bytes,
        password_salt: bytes,
        password_algo: str,
    ) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE app_user
                SET password_hash = %s, password_salt = %s, password_algo = %s,
                    reset_token = NULL, reset_expires_at = NULL
                WHERE id = %s AND reset_token = %s
                RETURNING {_USER_COLUMNS}
                """,
                (password_hash, password_salt, password_algo, user_id, expected_reset_token),
            ).fetchone()
        return self._user_from_row(row) if row else None

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
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    WITH inserted AS (
                        INSERT INTO task (
                            owner_user_id, title, note, deadline, category, priority,
                            pending, complete, user_note
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                        RETURNING *
                    )
                    SELECT i.*, u.username FROM inserted i JOIN app_user u ON u.id = i.owner_user_id
                    """,
                    (
                        owner_user_id,
                        title,
                        note,
                        deadline,
                        category,
                        priority,
                        pending,
                        complete,
                        user_note,
                    ),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "task owner does not exist", {"field": "owner_user_id"}
            )
        return self._task_from_row(row)

    def get_task(self, task_id: int) -> Optional[Task]:
        with self._connect() as conn:
            row = conn.execute(f"{_TASK_SELECT} WHERE t.id = %s", (task_id,)).fetchone()
        return self._task_from_row(row) if row else None

    def list_tasks(self) -> List[Task]:
        with self._connect() as conn:
            rows = conn.execute(f"{_TASK_SELECT} ORDER BY t.id").fetchall()
        return [self._task_from_row(row) for row in rows]

    def healthcheck(self) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 AS ok").fetchone()
        return bool(row and row.get("ok") == 1)

    def close(self) -> None:
        self.pool.close()
