from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import string
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from assigna.config import Settings
from assigna.logging import get_logger
from assigna.service.errors import InvalidSignature, MalformedToken, TokenExpired

logger = get_logger(__name__)

OPAQUE_ALPHABET = string.ascii_letters + string.digits
_REQUIRED_CLAIMS = ("name", "sub", "email", "role", "jti", "iat", "exp")


class Role(str, Enum):
    LEAD = "team-lead"
    MEMBER = "team-member"

    @classmethod
    def normalize(cls, value: Any) -> "Role":
        """Anything other than the exact lead literal is a member."""
        if isinstance(value, Role):
            return value
        return cls.LEAD if value == cls.LEAD.value else cls.MEMBER

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Strict lookup used where an unknown role must be rejected."""
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class Claims:
    """Verified identity carried by a bearer token."""

    name: str
    email: str
    role: Role
    jti: str
    issued_at: datetime
    expires_at: datetime

    @property
    def is_lead(self) -> bool:
        return self.role is Role.LEAD


def generate_opaque_token(length: int = 100) -> str:
    """Random ``[A-Za-z0-9]`` string for refresh and reset tokens."""
    if length <= 0:
        raise ValueError("token length must be positive")
    return "".join(secrets.choice(OPAQUE_ALPHABET) for _ in range(length))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """HS256 bearer tokens signed with the process secret.

    ``decode`` uses no clock-skew leeway: a token is expired the moment ``now``
    reaches ``exp``, so a token issued with a zero lifetime never verifies.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self._secret = settings.jwt_secret.encode()
        self._clock = clock or _utcnow

    def _now(self) -> datetime:
        return self._clock()

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(
        self,
        name: str,
        email: str,
        role: Any,
        *,
        lifetime_minutes: Optional[int] = None,
    ) -> str:
        if lifetime_minutes is None:
            lifetime_minutes = self.settings.session_ttl_minutes
        now = int(self._now().timestamp())
        payload = {
            "name": name,
            "sub": email,
            "email": email,
            "role": Role.normalize(role).value,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "nbf": now,
            "exp": now + int(lifetime_minutes) * 60,
            "iss": self.settings.jwt_issuer,
            "aud": self.settings.jwt_audience,
        }
        header_enc = self._encode_segment(
            json.dumps({"alg": "HS256", "typ": "JWT"}, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def expires_at(self, token: str) -> datetime:
        """Read ``exp`` from a token this codec just issued, without verifying it."""
        payload = json.loads(self._decode_segment(token.split(".")[1]))
        return datetime.fromtimestamp(payload["exp"], tz=timezone.utc)

    def decode(self, token: str) -> Claims:
        if not token or not isinstance(token, str):
            raise MalformedToken("Token is missing.")
        # compare_digest rejects non-ASCII str operands with TypeError
        if not token.isascii():
            raise MalformedToken("Token is not a well-formed JWT.")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise MalformedToken("Token is not a well-formed JWT.")

        try:
            header = json.loads(self._decode_segment(header_b64))
        except ValueError:
            logger.warning("jwt_header_decode_failed")
            raise MalformedToken("Token header could not be decoded.")
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning(
                "jwt_invalid_algorithm",
                alg=header.get("alg") if isinstance(header, dict) else None,
            )
            raise MalformedToken("Token algorithm is not accepted.")

        if not hmac.compare_digest(self._sign(f"{header_b64}.{payload_b64}"), sig_b64):
            raise InvalidSignature("Token signature is invalid.")

        try:
            payload = json.loads(self._decode_segment(payload_b64))
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            raise MalformedToken("Token payload could not be decoded.")
        if not isinstance(payload, dict):
            raise MalformedToken("Token payload could not be decoded.")

        if payload.get("iss") != self.settings.jwt_issuer:
            raise InvalidSignature("Token issuer is not trusted.")
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.settings.jwt_audience in aud
        else:
            valid_aud = aud == self.settings.jwt_audience
        if not valid_aud:
            raise InvalidSignature("Token audience is not accepted.")

        missing = [claim for claim in _REQUIRED_CLAIMS if payload.get(claim) in (None, "")]
        if missing:
            raise MalformedToken(
                "Token is missing required claims.", detail={"missing": missing}
            )
        try:
            iat = float(payload["iat"])
            exp = float(payload["exp"])
            nbf = float(payload.get("nbf", iat))
        except (TypeError, ValueError):
            raise MalformedToken("Token timestamps are invalid.")

        now = self._now().timestamp()
        if nbf > now:
            raise MalformedToken("Token is not valid yet.")
        if exp <= now:
            raise TokenExpired("Token is expired.")

        return Claims(
            name=str(payload["name"]),
            email=str(payload["email"]),
            role=Role.normalize(payload["role"]),
            jti=str(payload["jti"]),
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )


__all__ = [
    "Claims",
    "OPAQUE_ALPHABET",
    "Role",
    "TokenCodec",
    "generate_opaque_token",
]
