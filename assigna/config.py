from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any, List

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from assigna.logging import get_logger

logger = get_logger(__name__)

PASSWORD_HASH_ALGOS = ("hmac-sha256", "argon2id")


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process-wide settings read once at start-up."""

    database_url: str = env_field("postgresql://localhost:5432/assigna", "DATABASE_URL")
    shared_fs_root: str = env_field("/srv/assigna", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Deterministic behaviour for CI and local test runs.",
    )

    # Bearer token signing
    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_issuer: str = env_field("assigna", "JWT_ISSUER")
    jwt_audience: str = env_field("assigna-clients", "JWT_AUDIENCE")
    session_ttl_minutes: int = env_field(
        30,
        "SESSION_TTL_MINUTES",
        ge=0,
        description="Bearer token lifetime in minutes",
    )
    refresh_ttl_days: int = env_field(30, "REFRESH_TTL_DAYS", ge=1)
    reset_ttl_hours: int = env_field(24, "RESET_TTL_HOURS", ge=1)
    opaque_token_length: int = env_field(100, "OPAQUE_TOKEN_LENGTH", ge=32, le=255)
    password_hash_algo: str = env_field(
        "hmac-sha256",
        "PASSWORD_HASH_ALGO",
        description="Algorithm for newly stored passwords: hmac-sha256 or argon2id",
    )

    # External identity (Google)
    google_userinfo_url: str = env_field(
        "https://www.googleapis.com/oauth2/v3/userinfo", "GOOGLE_USERINFO_URL"
    )
    oauth_timeout_seconds: float = env_field(10.0, "OAUTH_TIMEOUT_SECONDS", gt=0)

    # Email
    smtp_host: str | None = env_field(None, "SMTP_HOST")
    smtp_port: int = env_field(587, "SMTP_PORT")
    smtp_user: str | None = env_field(None, "SMTP_USER")
    smtp_password: str | None = env_field(None, "SMTP_PASSWORD")
    smtp_use_tls: bool = env_field(True, "SMTP_USE_TLS")
    email_from_address: str | None = env_field(None, "EMAIL_FROM_ADDRESS")
    email_from_name: str = env_field("Assigna", "EMAIL_FROM_NAME")
    app_base_url: str = env_field("http://localhost:8000", "APP_BASE_URL")
    password_reset_url: str = env_field(
        "http://localhost:3000/reset-password?token",
        "PASSWORD_RESET_URL",
        description="Client page receiving the reset token as '<url>=<token>'",
    )

    # HTTP
    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")
    enable_hsts: bool = env_field(False, "ENABLE_HSTS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("password_hash_algo")
    @classmethod
    def _validate_hash_algo(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in PASSWORD_HASH_ALGOS:
            raise ValueError(
                f"password_hash_algo must be one of: {', '.join(PASSWORD_HASH_ALGOS)}"
            )
        return normalized

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return list(value)

    @field_validator("jwt_secret", mode="before")
    @classmethod
    def _ensure_jwt_secret(cls, value: str | None) -> str:
        if value:
            return value
        # Persist a generated secret so issued tokens survive restarts
        fs_root = Path(os.getenv("SHARED_FS_ROOT", "/srv/assigna"))
        secret_path = fs_root / ".jwt_secret"
        try:
            fs_root.mkdir(parents=True, exist_ok=True)
            os.chmod(fs_root, 0o700)
        except PermissionError:
            logger.debug("jwt_secret_dir_chmod_skipped", path=str(fs_root))
        except OSError as exc:
            logger.warning("jwt_secret_dir_setup", error=str(exc), path=str(fs_root))

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if len(persisted) >= 32:
                    return persisted
            except OSError as exc:
                logger.error("jwt_secret_read_failed", error=str(exc), path=str(secret_path))

        generated = secrets.token_urlsafe(64)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(fs_root), prefix=".jwt_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except OSError as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error("jwt_secret_persist_failed", error=str(exc), path=str(secret_path))
            raise RuntimeError(
                "Unable to persist JWT secret; set JWT_SECRET or make SHARED_FS_ROOT writable"
            ) from exc
        return generated


_settings_cache: Settings | None = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
