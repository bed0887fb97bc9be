from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from assigna.config import Settings
from assigna.logging import get_logger
from assigna.service.errors import (
    EmptyProfile,
    ProviderError,
    ServerError,
    UnsupportedProvider,
)
from assigna.service.sessions import (
    IdentityStore,
    SessionManager,
    TokenPair,
    normalize_email,
    require_role,
    role_of,
)
from assigna.service.tokens import Role
from assigna.storage.errors import ConstraintViolation
from assigna.storage.models import User

logger = get_logger(__name__)

SUPPORTED_PROVIDER = "Google"
_MAX_USERNAME_ATTEMPTS = 50


@dataclass(frozen=True)
class ExternalProfile:
    """Subset of the Google userinfo (v3) response used for provisioning."""

    email: str
    subject: Optional[str] = None
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None
    locale: Optional[str] = None
    email_verified: bool = False

    @classmethod
    def from_userinfo(cls, payload: Dict[str, Any]) -> "ExternalProfile":
        verified = payload.get("email_verified", False)
        if isinstance(verified, str):
            verified = verified.lower() == "true"
        return cls(
            email=normalize_email(payload.get("email") or ""),
            subject=payload.get("sub"),
            name=payload.get("name"),
            given_name=payload.get("given_name"),
            family_name=payload.get("family_name"),
            picture=payload.get("picture"),
            locale=payload.get("locale"),
            email_verified=bool(verified),
        )


class ExternalIdentityBridge:
    """Reconcile a Google identity with a local account.

    An email that already has an account always signs in with the stored role;
    the role the client asks for only matters when a new account is provisioned.
    """

    def __init__(
        self,
        store: IdentityStore,
        sessions: SessionManager,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.settings = settings
        self._transport = transport

    async def resolve_external_profile(self, access_token: str) -> ExternalProfile:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.oauth_timeout_seconds,
                follow_redirects=False,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    self.settings.google_userinfo_url,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.TimeoutException as exc:
            logger.error("oauth_userinfo_timeout", error=str(exc))
            raise ProviderError("Sign in provider did not respond in time.")
        except httpx.HTTPError as exc:
            logger.error("oauth_userinfo_transport_failed", error=str(exc))
            raise ProviderError("Sign in provider is unreachable.")

        if response.status_code != 200:
            logger.warning("oauth_userinfo_rejected", status=response.status_code)
            raise ProviderError(
                "Sign in provider rejected the access token.",
                detail={"provider_status": response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("oauth_userinfo_parse_failed", error=str(exc))
            raise ProviderError("Sign in provider returned an unreadable profile.")
        if not isinstance(payload, dict):
            raise ProviderError("Sign in provider returned an unreadable profile.")

        profile = ExternalProfile.from_userinfo(payload)
        if not profile.email:
            raise EmptyProfile("Sign in provider returned no email address.")
        return profile

    def _derive_username(self, profile: ExternalProfile, attempt: int) -> str:
        candidates = (profile.given_name, profile.name, profile.email.split("@", 1)[0])
        base = next((c.strip() for c in candidates if c and c.strip()), "user")
        return base if attempt == 1 else f"{base}-{attempt}"

    def _provision(self, profile: ExternalProfile, role: Role) -> User:
        for attempt in range(1, _MAX_USERNAME_ATTEMPTS + 1):
            username = self._derive_username(profile, attempt)
            if self.store.get_user_by_username(username):
                continue
            try:
                return self.store.create_user(
                    username,
                    profile.email,
                    display_name=profile.name or username,
                    is_lead=role is Role.LEAD,
                    given_name=profile.given_name,
                    family_name=profile.family_name,
                    picture=profile.picture,
                    locale=profile.locale,
                    email_verified=profile.email_verified,
                )
            except ConstraintViolation as exc:
                if exc.field != "email":
                    continue
                # a concurrent sign-in created the account first
                existing = self.store.get_user_by_email(profile.email)
                if existing:
                    return existing
                raise
        raise ServerError("Unable to allocate a username for the external account.")

    def sign_in_or_provision(
        self, profile: ExternalProfile, requested_role: object
    ) -> TokenPair:
        if not profile.email:
            raise EmptyProfile("Sign in provider returned no email address.")
        existing = self.store.get_user_by_email(profile.email)
        if existing:
            logger.info(
                "external_sign_in",
                user_id=existing.id,
                role=role_of(existing).value,
            )
            return self.sessions.issue_for(existing)

        role = require_role(requested_role)
        user = self._provision(profile, role)
        logger.info(
            "external_user_provisioned",
            user_id=user.id,
            role=role_of(user).value,
        )
        return self.sessions.issue_for(user)

    async def external_login(
        self, provider: str, access_token: str, requested_role: object
    ) -> TokenPair:
        if provider != SUPPORTED_PROVIDER:
            raise UnsupportedProvider(
                "Sign in provider is not found.", detail={"provider": provider}
            )
        profile = await self.resolve_external_profile(access_token)
        return self.sign_in_or_provision(profile, requested_role)
