from __future__ import annotations

import re
import unicodedata
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from assigna.logging import get_correlation_id

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
    "invalid_credentials",
    "token_expired",
    "refresh_expired",
    "invalid_token",
    "invalid_signature",
    "malformed_token",
    "session_active",
    "user_not_found",
    "email_already_exists",
    "username_already_exists",
    "invalid_role",
    "provider_error",
    "empty_profile",
})

PASSWORD_SYMBOLS = "#$^+=!*()@%&"
PASSWORD_MIN_LENGTH = 5
PASSWORD_MAX_LENGTH = 128


def _request_id() -> str:
    return get_correlation_id() or str(uuid.uuid4())


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """Uniform response wrapper for every endpoint, success or failure."""

    success: bool = True
    message: str = "Ok."
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


def _normalize_unicode(value: str) -> str:
    cleaned = "".join(ch for ch in value if unicodedata.category(ch) != "Cc")
    return unicodedata.normalize("NFKC", cleaned)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


_USERNAME_PATTERN = re.compile(r"^[\w.-]+$")


def _validate_username(value: str) -> str:
    value = _normalize_unicode((value or "").strip())
    if not value:
        raise ValueError("userName is required")
    if len(value) > 64:
        raise ValueError("userName must be at most 64 characters")
    if not _USERNAME_PATTERN.match(value):
        raise ValueError("userName may contain only letters, digits, '.', '_' and '-'")
    return value


def validate_password_strength(value: str) -> str:
    """At least five characters with one digit and one symbol."""
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(value) > PASSWORD_MAX_LENGTH:
        raise ValueError(f"password must be at most {PASSWORD_MAX_LENGTH} characters")
    if not any(ch.isdigit() for ch in value):
        raise ValueError("password must contain at least one digit")
    if not any(ch in PASSWORD_SYMBOLS for ch in value):
        raise ValueError(f"password must contain at least one of {PASSWORD_SYMBOLS}")
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(_CamelModel):
    username: str = Field(..., alias="userName")
    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=128)
    email: str
    password: str
    role: str = Field(..., max_length=32)

    @field_validator("username")
    @classmethod
    def _validate_username(cls, value: str) -> str:
        return _validate_username(value)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password_strength(value)


class LoginRequest(_CamelModel):
    username: str = Field(..., alias="userName", max_length=64)
    password: str = Field(..., max_length=PASSWORD_MAX_LENGTH)


class TokenRefreshRequest(_CamelModel):
    refresh_token: str = Field(..., alias="tokenRefresh", min_length=1, max_length=2048)


class ForgotPasswordRequest(BaseModel):
    email: str

    @field_validator("email")
    @classmethod
    def _validate_forgot_email(cls, value: str) -> str:
        return _validate_email(value)


class ResetPasswordRequest(_CamelModel):
    password: str
    confirm_password: str = Field(..., alias="confirmPassword")
    reset_token: str = Field(..., alias="resetToken", min_length=1, max_length=2048)

    @field_validator("password")
    @classmethod
    def _validate_password(cls, value: str) -> str:
        return validate_password_strength(value)

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("confirmPassword must match password")
        return self


class ExternalLoginRequest(_CamelModel):
    provider: str = Field(..., max_length=32)
    access_token: str = Field(..., alias="accessToken", min_length=1, max_length=4096)
    role: Optional[str] = Field(default=None, max_length=32)


class TokenPairResponse(BaseModel):
    token: str
    refresh_token: str = Field(..., serialization_alias="refreshToken")


class MemberResponse(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    email: str
    picture: Optional[str] = None


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    note: Optional[str] = None
    deadline: Optional[datetime] = None
    category: Optional[str] = None
    priority: str
    pending: bool
    complete: bool
    user_note: Optional[str] = None
    owner_user_id: int
    username: str
    created_at: datetime


class TaskCountResponse(BaseModel):
    all: int
    pending: int
    complete: int
    high: int
    medium: int
    low: int
