from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

from argon2 import Type
from argon2.low_level import hash_secret_raw

from assigna.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ALGO = "hmac-sha256"
SALT_BYTES = 32
DIGEST_BYTES = 32

# argon2id cost parameters (RFC 9106 second recommended option)
_ARGON2_TIME_COST = 3
_ARGON2_MEMORY_COST = 64 * 1024
_ARGON2_PARALLELISM = 4


@dataclass(frozen=True)
class PasswordDigest:
    hash: bytes
    salt: bytes
    algo: str = DEFAULT_ALGO


def _derive(password: str, salt: bytes, algo: str) -> bytes:
    secret = password.encode("utf-8")
    if algo == "hmac-sha256":
        return hmac.new(salt, secret, hashlib.sha256).digest()
    if algo == "argon2id":
        return hash_secret_raw(
            secret,
            salt,
            time_cost=_ARGON2_TIME_COST,
            memory_cost=_ARGON2_MEMORY_COST,
            parallelism=_ARGON2_PARALLELISM,
            hash_len=DIGEST_BYTES,
            type=Type.ID,
        )
    raise ValueError(f"unsupported password algorithm: {algo}")


def hash_password(password: str, algo: str = DEFAULT_ALGO) -> PasswordDigest:
    """Hash ``password`` under a fresh random salt.

    The salt doubles as the HMAC key for ``hmac-sha256``; for ``argon2id`` it is
    the argon2 salt. Both produce a 256-bit digest, so stored columns have the
    same shape whichever algorithm wrote them.
    """
    salt = secrets.token_bytes(SALT_BYTES)
    return PasswordDigest(hash=_derive(password, salt, algo), salt=salt, algo=algo)


def verify_password(
    password: str,
    stored_hash: Optional[bytes],
    salt: Optional[bytes],
    algo: Optional[str] = DEFAULT_ALGO,
) -> bool:
    """Recompute the digest with the stored salt and compare in constant time."""
    if not stored_hash or not salt:
        return False
    try:
        candidate = _derive(password, salt, algo or DEFAULT_ALGO)
    except ValueError:
        logger.warning("password_algo_unsupported", algo=algo)
        return False
    return hmac.compare_digest(candidate, stored_hash)


__all__ = ["DEFAULT_ALGO", "PasswordDigest", "hash_password", "verify_password"]
