"""Tests for entitlement mapping helpers in billing_service."""

import pytest

from billing_sync.models.account import Account
from billing_sync.models.audit import AuditEvent
from billing_sync.services.billing_service import (
    has_premium_voice,
    map_provider_status,
    raise_operator_alert,
)


class TestMapProviderStatus:

    @pytest.mark.parametrize("provider_status, expected", [
        ("active", "active"),
        ("trialing", "trialing"),
        ("past_due", "past_due"),
        ("canceled", "canceled"),
        ("unpaid", "canceled"),
    ])
    def test_known_statuses(self, provider_status, expected):
        assert map_provider_status(provider_status) == expected

    @pytest.mark.parametrize("provider_status", [
        "incomplete", "incomplete_expired", "paused", "ACTIVE", "", None, "brand_new_state",
    ])
    def test_unknown_statuses_deny_access(self, provider_status):
        """Anything unrecognized is free, never active or trialing."""
        assert map_provider_status(provider_status) == Account.FREE

    def test_same_input_same_output(self):
        results = {map_provider_status("past_due") for _ in range(5)}
        assert results == {"past_due"}
        assert map_provider_status("unknown") == map_provider_status("unknown")


class TestPremiumVoice:

    def test_enabled_when_billed_and_active(self):
        assert has_premium_voice(True, "active") is True
        assert has_premium_voice(True, "trialing") is True

    def test_disabled_without_paid_access(self):
        assert has_premium_voice(True, "past_due") is False
        assert has_premium_voice(True, "canceled") is False
        assert has_premium_voice(True, "free") is False

    def test_disabled_without_addon(self):
        assert has_premium_voice(False, "active") is False


class TestOperatorAlert:

    def test_alert_is_recorded(self, db_session):
        raise_operator_alert("alert.unresolved_identity", "evt_alert", {"reason": "x"})

        alert = AuditEvent.query.filter_by(stripe_event_id="evt_alert").one()
        assert alert.action == "alert.unresolved_identity"
        assert alert.account_id is None
        assert alert.metadata_ == {"reason": "x"}
