from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass pins an HTTP ``status_code`` and a stable ``error_code`` that
    clients may branch on. Both can be overridden per raise, e.g. an expired
    reset token is a 400 while an expired bearer token is a 401.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied - insufficient permissions (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


# Identity errors


class InvalidCredentials(AuthenticationError):
    error_code = "invalid_credentials"


class TokenExpired(AuthenticationError):
    """A bearer or reset token is past its expiry.

    For bearer tokens this is the only retryable failure: the client refreshes
    and retries once.
    """
    error_code = "token_expired"


class RefreshExpired(AuthenticationError):
    error_code = "refresh_expired"


class InvalidToken(AuthenticationError):
    """Token integrity failure, or an opaque token that matches no account."""
    error_code = "invalid_token"


class InvalidSignature(InvalidToken):
    error_code = "invalid_signature"


class MalformedToken(InvalidToken):
    error_code = "malformed_token"


class SessionStillActive(ConflictError):
    """Refresh attempted while the current bearer token is still valid."""
    error_code = "session_active"


class UserNotFound(NotFoundError):
    error_code = "user_not_found"


class EmailAlreadyExists(ConflictError):
    error_code = "email_already_exists"


class UsernameAlreadyExists(ConflictError):
    error_code = "username_already_exists"


class InvalidRole(ValidationError):
    error_code = "invalid_role"


class UnsupportedProvider(ValidationError):
    pass


class ProviderError(ServiceError):
    """External identity provider failed, timed out or returned garbage (502)."""
    status_code = 502
    error_code = "provider_error"


class EmptyProfile(ValidationError):
    error_code = "empty_profile"


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "InvalidCredentials",
    "TokenExpired",
    "RefreshExpired",
    "InvalidToken",
    "InvalidSignature",
    "MalformedToken",
    "SessionStillActive",
    "UserNotFound",
    "EmailAlreadyExists",
    "UsernameAlreadyExists",
    "InvalidRole",
    "UnsupportedProvider",
    "ProviderError",
    "EmptyProfile",
]
