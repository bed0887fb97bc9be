"""Unit tests for credential hashing."""

import pytest

from assigna.service.passwords import (
    DEFAULT_ALGO,
    PasswordDigest,
    hash_password,
    verify_password,
)


class TestHashPassword:
    def test_default_algorithm_is_hmac(self):
        digest = hash_password("s3cret!")
        assert isinstance(digest, PasswordDigest)
        assert digest.algo == DEFAULT_ALGO == "hmac-sha256"

    @pytest.mark.parametrize("algo", ["hmac-sha256", "argon2id"])
    def test_digest_and_salt_are_256_bits(self, algo):
        digest = hash_password("s3cret!", algo)
        assert len(digest.hash) == 32
        assert len(digest.salt) == 32

    def test_same_password_produces_different_pairs(self):
        first = hash_password("s3cret!")
        second = hash_password("s3cret!")
        assert first.salt != second.salt
        assert first.hash != second.hash

    def test_unknown_algorithm_is_rejected(self):
        with pytest.raises(ValueError):
            hash_password("s3cret!", "md5")


class TestVerifyPassword:
    @pytest.mark.parametrize("algo", ["hmac-sha256", "argon2id"])
    def test_round_trip(self, algo):
        digest = hash_password("s3cret!", algo)
        assert verify_password("s3cret!", digest.hash, digest.salt, digest.algo)

    def test_wrong_password_returns_false(self):
        digest = hash_password("s3cret!")
        assert verify_password("s3cret?", digest.hash, digest.salt, digest.algo) is False

    def test_wrong_algorithm_does_not_match(self):
        digest = hash_password("s3cret!", "hmac-sha256")
        assert verify_password("s3cret!", digest.hash, digest.salt, "argon2id") is False

    def test_missing_material_returns_false(self):
        digest = hash_password("s3cret!")
        assert verify_password("s3cret!", None, digest.salt) is False
        assert verify_password("s3cret!", digest.hash, None) is False

    def test_unknown_algorithm_returns_false(self):
        digest = hash_password("s3cret!")
        assert verify_password("s3cret!", digest.hash, digest.salt, "bcrypt") is False

    def test_missing_algorithm_falls_back_to_default(self):
        digest = hash_password("s3cret!")
        assert verify_password("s3cret!", digest.hash, digest.salt, None)
