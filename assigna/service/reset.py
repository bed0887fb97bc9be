from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import quote

from assigna.config import Settings
from assigna.logging import get_logger
from assigna.service.email import Notifier
from assigna.service.errors import InvalidToken, TokenExpired, UserNotFound
from assigna.service.passwords import hash_password
from assigna.service.sessions import IdentityStore, normalize_email
from assigna.service.tokens import generate_opaque_token

logger = get_logger(__name__)

RESET_SUBJECT = "Password Reset"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PasswordResetFlow:
    """Single-use, time-limited password reset tokens.

    A request replaces any pending token for the account. Completion swaps
    the credential and clears the token in one conditional update, so a token
    can be redeemed at most once even under concurrent submissions.

    Reset failures are reported to the client as 400s rather than the 401s
    used for bearer tokens.
    """

    def __init__(
        self,
        store: IdentityStore,
        notifier: Notifier,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.settings = settings
        self._clock = clock or _utcnow

    def _now(self) -> datetime:
        return self._clock()

    def reset_link(self, token: str) -> str:
        return f"{self.settings.password_reset_url}={quote(token, safe='')}"

    def request_reset(self, email: str) -> str:
        user = self.store.get_user_by_email(normalize_email(email))
        if not user:
            raise UserNotFound("No user is found.")
        token = generate_opaque_token(self.settings.opaque_token_length)
        expires_at = self._now() + timedelta(hours=self.settings.reset_ttl_hours)
        if not self.store.set_reset_token(user.id, token, expires_at):
            raise UserNotFound("No user is found.")
        logger.info("password_reset_requested", user_id=user.id)

        body = f"Click <a href='{self.reset_link(token)}'>here</a> to reset your password."
        if not self.notifier.send(user.email, RESET_SUBJECT, body):
            logger.warning("password_reset_mail_failed", user_id=user.id)
        return token

    def complete_reset(self, reset_token: str, new_password: str) -> None:
        user = self.store.get_user_by_reset_token(reset_token)
        if not user:
            logger.warning("password_reset_invalid_token")
            raise InvalidToken("Invalid token.", status_code=400)
        if not user.reset_expires_at or user.reset_expires_at < self._now():
            logger.info("password_reset_token_expired", user_id=user.id)
            raise TokenExpired("Token is expired.", status_code=400)

        digest = hash_password(new_password, self.settings.password_hash_algo)
        updated = self.store.consume_reset_token(
            user.id,
            reset_token,
            password_hash=digest.hash,
            password_salt=digest.salt,
            password_algo=digest.algo,
        )
        if not updated:
            logger.warning("password_reset_race_lost", user_id=user.id)
            raise InvalidToken("Invalid token.", status_code=400)
        logger.info("password_reset_completed", user_id=user.id)

        if not self.notifier.send(
            updated.email, RESET_SUBJECT, "Your password reset successfully."
        ):
            logger.warning("password_reset_confirmation_failed", user_id=user.id)
