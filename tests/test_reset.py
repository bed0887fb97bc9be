"""Unit tests for the password reset flow."""

from urllib.parse import quote

import pytest

from assigna.service.errors import InvalidToken, TokenExpired, UserNotFound
from assigna.service.reset import PasswordResetFlow
from assigna.service.sessions import SessionManager


@pytest.fixture
def sessions(memory_store, settings, clock):
    return SessionManager(memory_store, settings, clock=clock)


@pytest.fixture
def flow(memory_store, notifier, settings, clock):
    return PasswordResetFlow(memory_store, notifier, settings, clock=clock)


@pytest.fixture
def alice(sessions):
    user, _ = sessions.register("alice", "Alice", "alice@example.com", "old#pw1", "team-member")
    return user


class TestRequestReset:
    def test_token_stored_and_mailed(self, flow, alice, memory_store, notifier, clock):
        token = flow.request_reset("alice@example.com")

        stored = memory_store.get_user(alice.id)
        assert stored.reset_token == token
        assert len(token) == 100
        assert (stored.reset_expires_at - clock.now).total_seconds() == 24 * 3600

        to, subject, body = notifier.sent[0]
        assert to == "alice@example.com"
        assert subject == "Password Reset"
        expected_link = f"https://app.example.com/reset-password?token={quote(token, safe='')}"
        assert f"<a href='{expected_link}'>here</a>" in body

    def test_unknown_email(self, flow):
        with pytest.raises(UserNotFound):
            flow.request_reset("ghost@example.com")

    def test_new_request_replaces_old_token(self, flow, alice, sessions):
        first = flow.request_reset("alice@example.com")
        second = flow.request_reset("alice@example.com")
        assert first != second
        with pytest.raises(InvalidToken):
            flow.complete_reset(first, "new#pw1")
        flow.complete_reset(second, "new#pw1")
        sessions.login("alice", "new#pw1")

    def test_notifier_failure_does_not_fail_request(
        self, memory_store, failing_notifier, settings, clock, alice
    ):
        flow = PasswordResetFlow(memory_store, failing_notifier, settings, clock=clock)
        token = flow.request_reset("alice@example.com")
        assert memory_store.get_user(alice.id).reset_token == token


class TestCompleteReset:
    def test_success_replaces_credential_and_clears_token(
        self, flow, alice, memory_store, sessions, notifier
    ):
        token = flow.request_reset("alice@example.com")
        flow.complete_reset(token, "new#pw1")

        stored = memory_store.get_user(alice.id)
        assert stored.reset_token is None
        assert stored.reset_expires_at is None
        sessions.login("alice", "new#pw1")
        assert notifier.sent[-1][2] == "Your password reset successfully."

    def test_token_is_single_use(self, flow, alice):
        token = flow.request_reset("alice@example.com")
        flow.complete_reset(token, "new#pw1")
        with pytest.raises(InvalidToken) as exc:
            flow.complete_reset(token, "other#pw2")
        assert exc.value.status_code == 400

    def test_expired_token_leaves_hash_unchanged(self, flow, alice, memory_store, clock, sessions):
        token = flow.request_reset("alice@example.com")
        before = memory_store.get_user(alice.id)
        old_hash, old_salt = before.password_hash, before.password_salt

        clock.advance(hours=25)
        with pytest.raises(TokenExpired) as exc:
            flow.complete_reset(token, "new#pw1")

        assert exc.value.status_code == 400
        after = memory_store.get_user(alice.id)
        assert after.password_hash == old_hash
        assert after.password_salt == old_salt
        sessions.login("alice", "old#pw1")

    def test_unknown_token(self, flow):
        with pytest.raises(InvalidToken):
            flow.complete_reset("nope", "new#pw1")

    def test_lost_race_is_invalid_token(self, flow, alice, memory_store):
        token = flow.request_reset("alice@example.com")
        original = memory_store.consume_reset_token

        def consume_after_competitor(user_id, expected, **fields):
            original(user_id, expected, **fields)
            return original(user_id, expected, **fields)

        memory_store.consume_reset_token = consume_after_competitor
        with pytest.raises(InvalidToken):
            flow.complete_reset(token, "new#pw1")
