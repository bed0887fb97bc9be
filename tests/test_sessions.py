"""Unit tests for registration, login, refresh rotation and authentication."""

import pytest

from assigna.service.errors import (
    AuthenticationError,
    EmailAlreadyExists,
    InvalidCredentials,
    InvalidRole,
    RefreshExpired,
    SessionStillActive,
    TokenExpired,
    UserNotFound,
    UsernameAlreadyExists,
)
from assigna.service.sessions import SessionManager
from assigna.service.tokens import Role


@pytest.fixture
def sessions(memory_store, settings, clock):
    return SessionManager(memory_store, settings, clock=clock)


@pytest.fixture
def alice(sessions):
    user, pair = sessions.register("alice", "Alice", "alice@example.com", "pw#1abc", "team-lead")
    return user, pair


class TestRegister:
    def test_register_creates_user_and_pair(self, sessions, memory_store):
        user, pair = sessions.register(
            "bob", "Bob", "bob@example.com", "pw#1abc", "team-member"
        )
        stored = memory_store.get_user(user.id)

        assert stored.username == "bob"
        assert stored.is_lead is False
        assert stored.password_algo == "hmac-sha256"
        assert stored.session_token == pair.token
        assert stored.refresh_token == pair.refresh_token
        assert len(pair.refresh_token) == 100

    def test_register_lead_role(self, sessions, alice):
        user, pair = alice
        assert user.is_lead
        assert sessions.authenticate(f"Bearer {pair.token}").role is Role.LEAD

    def test_duplicate_email_rejected(self, sessions, alice):
        with pytest.raises(EmailAlreadyExists):
            sessions.register("alice2", "A", "ALICE@example.com", "pw#1abc", "team-member")

    def test_duplicate_username_rejected(self, sessions, alice):
        with pytest.raises(UsernameAlreadyExists):
            sessions.register("alice", "A", "other@example.com", "pw#1abc", "team-member")

    @pytest.mark.parametrize("role", ["admin", "", None, "Team-Lead"])
    def test_invalid_role_rejected(self, sessions, memory_store, role):
        with pytest.raises(InvalidRole) as exc:
            sessions.register("carol", "C", "carol@example.com", "pw#1abc", role)
        assert exc.value.message == "Account type does not match with correct account type."
        assert memory_store.get_user_by_email("carol@example.com") is None

    def test_argon2_configured_algorithm_is_recorded(self, memory_store, settings, clock):
        manager = SessionManager(
            memory_store,
            settings.model_copy(update={"password_hash_algo": "argon2id"}),
            clock=clock,
        )
        user, _ = manager.register("dave", "D", "dave@example.com", "pw#1abc", "team-member")
        assert memory_store.get_user(user.id).password_algo == "argon2id"
        manager.login("dave", "pw#1abc")


class TestLogin:
    def test_login_issues_new_pair(self, sessions, alice, memory_store):
        user, first = alice
        second = sessions.login("alice", "pw#1abc")

        assert second.refresh_token != first.refresh_token
        assert memory_store.get_user(user.id).refresh_token == second.refresh_token

    def test_login_is_case_insensitive_on_username(self, sessions, alice):
        sessions.login("ALICE", "pw#1abc")

    def test_wrong_password(self, sessions, alice):
        with pytest.raises(InvalidCredentials):
            sessions.login("alice", "wrong#1")

    def test_unknown_user_is_indistinguishable(self, sessions):
        with pytest.raises(InvalidCredentials) as exc:
            sessions.login("nobody", "pw#1abc")
        assert exc.value.status_code == 401

    def test_passwordless_account_cannot_login(self, sessions, memory_store):
        memory_store.create_user("ext", "ext@example.com")
        with pytest.raises(InvalidCredentials):
            sessions.login("ext", "anything#1")


class TestRefresh:
    def test_refresh_refused_while_session_active(self, sessions, alice):
        _, pair = alice
        with pytest.raises(SessionStillActive) as exc:
            sessions.refresh(pair.refresh_token)
        assert exc.value.status_code == 409

    def test_refresh_after_expiry_rotates_both(self, sessions, alice, clock, memory_store):
        user, pair = alice
        clock.advance(minutes=31)
        rotated = sessions.refresh(pair.refresh_token)

        assert rotated.token != pair.token
        assert rotated.refresh_token != pair.refresh_token
        stored = memory_store.get_user(user.id)
        assert stored.refresh_token == rotated.refresh_token
        assert sessions.authenticate(f"Bearer {rotated.token}").name == "alice"

    def test_stale_refresh_token_fails_after_rotation(self, sessions, alice, clock):
        _, pair = alice
        clock.advance(minutes=31)
        sessions.refresh(pair.refresh_token)
        with pytest.raises(UserNotFound):
            sessions.refresh(pair.refresh_token)

    def test_unknown_refresh_token(self, sessions):
        with pytest.raises(UserNotFound):
            sessions.refresh("x" * 100)

    def test_expired_refresh_token(self, sessions, alice, clock):
        _, pair = alice
        clock.advance(days=31)
        with pytest.raises(RefreshExpired):
            sessions.refresh(pair.refresh_token)

    def test_lost_race_reports_user_not_found(self, sessions, alice, clock, memory_store):
        user, pair = alice
        clock.advance(minutes=31)
        original_rotate = memory_store.rotate_session

        def rotate_after_competitor(user_id, expected, **fields):
            # a competing request rotates first
            memory_store.store_session(
                user_id,
                session_token="other",
                session_expires_at=fields["session_expires_at"],
                refresh_token="competitor",
                refresh_expires_at=fields["refresh_expires_at"],
            )
            return original_rotate(user_id, expected, **fields)

        memory_store.rotate_session = rotate_after_competitor
        with pytest.raises(UserNotFound):
            sessions.refresh(pair.refresh_token)
        assert memory_store.get_user(user.id).refresh_token == "competitor"


class TestAuthenticate:
    def test_valid_bearer(self, sessions, alice):
        _, pair = alice
        claims = sessions.authenticate(f"Bearer {pair.token}")
        assert claims.email == "alice@example.com"

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer "])
    def test_missing_or_wrong_scheme(self, sessions, header):
        with pytest.raises(AuthenticationError):
            sessions.authenticate(header)

    def test_expired_bearer(self, sessions, alice, clock):
        _, pair = alice
        clock.advance(minutes=30)
        with pytest.raises(TokenExpired):
            sessions.authenticate(f"Bearer {pair.token}")
