"""Tests for the team-lead bootstrap script."""

import importlib.util
from pathlib import Path

import pytest

from assigna.api.schemas import PASSWORD_SYMBOLS
from assigna.service.runtime import get_runtime

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "bootstrap_lead.py"


@pytest.fixture
def bootstrap():
    spec = importlib.util.spec_from_file_location("bootstrap_lead", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestValidatePassword:
    def test_accepts_what_the_api_accepts(self, bootstrap):
        assert bootstrap.validate_password("Lead#2024") is None

    @pytest.mark.parametrize("password", ["ab#1", "abcdef#", "abcdef1"])
    def test_reports_the_broken_rule(self, bootstrap, password):
        assert bootstrap.validate_password(password)

    def test_every_api_symbol_is_accepted(self, bootstrap):
        for symbol in PASSWORD_SYMBOLS:
            assert bootstrap.validate_password(f"abcd1{symbol}") is None


class TestBootstrapLead:
    def test_creates_lead(self, bootstrap):
        result = bootstrap.bootstrap_lead("lead", "lead@example.com", "Lead#2024")

        assert result["status"] == "created"
        assert get_runtime().store.get_user_by_email("lead@example.com").is_lead

    def test_existing_member_is_not_promoted(self, bootstrap):
        get_runtime().sessions.register(
            "bob", "Bob", "bob@example.com", "pw#1abc", "team-member"
        )
        result = bootstrap.bootstrap_lead("bob", "bob@example.com", "Lead#2024")

        assert result["status"] == "exists_as_member"
        assert get_runtime().store.get_user_by_email("bob@example.com").is_lead is False
