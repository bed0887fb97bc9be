from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Protocol, Tuple

from assigna.config import Settings
from assigna.logging import get_logger
from assigna.service.errors import (
    AuthenticationError,
    EmailAlreadyExists,
    InvalidCredentials,
    InvalidRole,
    RefreshExpired,
    SessionStillActive,
    UserNotFound,
    UsernameAlreadyExists,
)
from assigna.service.passwords import hash_password, verify_password
from assigna.service.tokens import Claims, Role, TokenCodec, generate_opaque_token
from assigna.storage.errors import ConstraintViolation
from assigna.storage.models import Task, User

logger = get_logger(__name__)

INVALID_ROLE_MESSAGE = "Account type does not match with correct account type."


class IdentityStore(Protocol):
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
    ) -> User: ...

    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def get_user_by_refresh_token(self, refresh_token: str) -> Optional[User]: ...

    def get_user_by_reset_token(self, reset_token: str) -> Optional[User]: ...

    def list_members(self) -> List[User]: ...

    def store_session(
        self,
        user_id: int,
        *,
        session_token: str,
        session_expires_at: datetime,
        refresh_token: str,
        refresh_expires_at: datetime,
    ) -> Optional[User]: ...

    def rotate_session(
        self,
        user_id: int,
        expected_refresh_token: str,
        *,
        session_token: str,
        session_expires_at: datetime,
        refresh_token: str,
        refresh_expires_at: datetime,
    ) -> Optional[User]: ...

    def set_reset_token(
        self, user_id: int, reset_token: str, reset_expires_at: datetime
    ) -> Optional[User]: ...

    def consume_reset_token(
        self,
        user_id: int,
        expected_reset_token: str,
        *,
        password_hash: bytes,
        password_salt: bytes,
        password_algo: str,
    ) -> Optional[User]: ...

    def get_task(self, task_id: int) -> Optional[Task]: ...

    def list_tasks(self) -> List[Task]: ...


@dataclass(frozen=True)
class TokenPair:
    token: str
    refresh_token: str


def role_of(user: User) -> Role:
    return Role.LEAD if user.is_lead else Role.MEMBER


def normalize_email(email: str) -> str:
    return (email or "").strip()


def require_role(value: object) -> Role:
    role = Role.parse(value)
    if role is None:
        raise InvalidRole(INVALID_ROLE_MESSAGE, detail={"role": value})
    return role


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Registration, login, refresh rotation and bearer authentication.

    Every issuance replaces both halves of the pair on the account row. The
    refresh path only rotates once the bearer token has lapsed, and the
    rotation is a compare-and-swap on the stored refresh token so two callers
    presenting the same refresh token cannot both succeed.
    """

    def __init__(
        self,
        store: IdentityStore,
        settings: Settings,
        *,
        codec: Optional[TokenCodec] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock or _utcnow
        self.codec = codec or TokenCodec(settings, clock=self._clock)
        self.logger = logger

    def _now(self) -> datetime:
        return self._clock()

    def _new_pair(self, user: User) -> Tuple[TokenPair, datetime, datetime]:
        token = self.codec.issue(user.username, user.email, role_of(user))
        refresh_token = generate_opaque_token(self.settings.opaque_token_length)
        session_expires_at = self.codec.expires_at(token)
        refresh_expires_at = self._now() + timedelta(days=self.settings.refresh_ttl_days)
        return TokenPair(token, refresh_token), session_expires_at, refresh_expires_at

    def issue_for(self, user: User) -> TokenPair:
        """Issue a fresh pair for ``user`` and persist it unconditionally."""
        pair, session_expires_at, refresh_expires_at = self._new_pair(user)
        stored = self.store.store_session(
            user.id,
            session_token=pair.token,
            session_expires_at=session_expires_at,
            refresh_token=pair.refresh_token,
            refresh_expires_at=refresh_expires_at,
        )
        if not stored:
            raise UserNotFound("No user is found.")
        self.logger.info("session_issued", user_id=user.id, role=role_of(user).value)
        return pair

    def register(
        self,
        username: str,
        display_name: Optional[str],
        email: str,
        password: str,
        role: object,
    ) -> Tuple[User, TokenPair]:
        resolved_role = require_role(role)
        email = normalize_email(email)
        username = (username or "").strip()
        if self.store.get_user_by_email(email):
            raise EmailAlreadyExists("Email already exists.", detail={"field": "email"})
        if self.store.get_user_by_username(username):
            raise UsernameAlreadyExists(
                "Username already exists.", detail={"field": "username"}
            )
        digest = hash_password(password, self.settings.password_hash_algo)
        try:
            user = self.store.create_user(
                username,
                email,
                display_name=display_name,
                password_hash=digest.hash,
                password_salt=digest.salt,
                password_algo=digest.algo,
                is_lead=resolved_role is Role.LEAD,
            )
        except ConstraintViolation as exc:
            # lost a race with a concurrent registration
            if exc.field == "username":
                raise UsernameAlreadyExists(
                    "Username already exists.", detail={"field": "username"}
                )
            raise EmailAlreadyExists("Email already exists.", detail={"field": "email"})
        self.logger.info("user_registered", user_id=user.id, role=resolved_role.value)
        return user, self.issue_for(user)

    def login(self, username: str, password: str) -> TokenPair:
        user = self.store.get_user_by_username((username or "").strip())
        if not user:
            self.logger.warning("login_failed", reason="unknown_user")
            raise InvalidCredentials("Invalid username or password.")
        if not user.has_password:
            self.logger.warning("login_failed", reason="no_password", user_id=user.id)
            raise InvalidCredentials("Invalid username or password.")
        if not verify_password(
            password, user.password_hash, user.password_salt, user.password_algo
        ):
            self.logger.warning("login_failed", reason="mismatch", user_id=user.id)
            raise InvalidCredentials("Invalid username or password.")
        self.logger.info("login_succeeded", user_id=user.id)
        return self.issue_for(user)

    def refresh(self, refresh_token: str) -> TokenPair:
        user = self.store.get_user_by_refresh_token(refresh_token)
        if not user:
            self.logger.warning("refresh_unknown_token")
            raise UserNotFound("No user is found.")
        now = self._now()
        if user.session_expires_at and user.session_expires_at > now:
            raise SessionStillActive("Verify token is still not expired.")
        if not user.refresh_expires_at or user.refresh_expires_at < now:
            self.logger.info("refresh_expired", user_id=user.id)
            raise RefreshExpired("Refresh token is expired.")

        pair, session_expires_at, refresh_expires_at = self._new_pair(user)
        rotated = self.store.rotate_session(
            user.id,
            refresh_token,
            session_token=pair.token,
            session_expires_at=session_expires_at,
            refresh_token=pair.refresh_token,
            refresh_expires_at=refresh_expires_at,
        )
        if not rotated:
            self.logger.warning("refresh_race_lost", user_id=user.id)
            raise UserNotFound("No user is found.")
        self.logger.info("refresh_rotated", user_id=user.id)
        return pair

    def authenticate(self, authorization: Optional[str]) -> Claims:
        """Resolve an ``Authorization: Bearer <token>`` header to verified claims."""
        if not authorization:
            raise AuthenticationError("Missing bearer token.")
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise AuthenticationError("Authorization header must use the Bearer scheme.")
        return self.codec.decode(token.strip())
