"""Tests for identity resolution."""

import logging
from datetime import datetime, timezone

from billing_sync.services.identity_service import (
    MultiAccount,
    SingleAccount,
    Unresolved,
    extract_metadata,
    parse_profile_ids,
    resolve,
)


class TestParseProfileIds:

    def test_trims_and_dedupes(self):
        assert parse_profile_ids(" P1, P2 ,,P1,P3 ") == ("P1", "P2", "P3")

    def test_empty(self):
        assert parse_profile_ids("") == ()
        assert parse_profile_ids(None) == ()


class TestExtractMetadata:

    def test_object_metadata_wins(self):
        obj = {"metadata": {"account_id": "U1"},
               "subscription_details": {"metadata": {"account_id": "U2"}}}
        assert extract_metadata(obj) == {"account_id": "U1"}

    def test_invoice_subscription_details(self):
        obj = {"metadata": {}, "subscription_details": {"metadata": {"account_id": "U2"}}}
        assert extract_metadata(obj) == {"account_id": "U2"}

    def test_invoice_parent_subscription_details(self):
        obj = {"parent": {"subscription_details": {"metadata": {"account_id": "U3"}}}}
        assert extract_metadata(obj) == {"account_id": "U3"}


class TestResolve:

    def test_explicit_account_id_first(self, provider):
        """Explicit id beats both the family list and the email."""
        obj = {
            "metadata": {
                "account_id": "U1",
                "type": "multi_subscription",
                "profile_ids": "P1,P2",
            },
            "customer": "cus_1",
        }
        assert resolve(obj, provider) == SingleAccount("U1")
        assert provider.calls == []

    def test_legacy_metadata_key(self, provider):
        assert resolve({"metadata": {"supabase_user_id": "U2"}}, provider) == SingleAccount("U2")

    def test_client_reference_id_only_for_checkout(self, provider):
        session = {"object": "checkout.session", "client_reference_id": "U3", "metadata": {}}
        assert resolve(session, provider) == SingleAccount("U3")

        other = {"object": "subscription", "client_reference_id": "U3", "metadata": {}}
        assert isinstance(resolve(other, provider), Unresolved)

    def test_multi_subscription(self, provider):
        obj = {"metadata": {"type": "multi_subscription", "profile_ids": "P1,P2,P3"}}
        assert resolve(obj, provider) == MultiAccount(("P1", "P2", "P3"))

    def test_multi_without_ids_falls_back_to_email(self, provider, make_account):
        make_account("PARENT", email="parent@example.com")
        obj = {
            "metadata": {"type": "multi_subscription", "profile_ids": " , "},
            "customer_email": "parent@example.com",
        }
        assert resolve(obj, provider) == SingleAccount("PARENT")

    def test_email_on_payload_skips_stripe_call(self, provider, make_account):
        make_account("U4", email="u4@example.com")
        obj = {"metadata": {}, "customer": "cus_4",
               "customer_details": {"email": "U4@example.com"}}
        assert resolve(obj, provider) == SingleAccount("U4")
        assert provider.calls == []

    def test_email_from_provider(self, provider, make_account):
        make_account("U5", email="u5@example.com")
        provider.emails["cus_5"] = "u5@example.com"
        assert resolve({"customer": "cus_5"}, provider) == SingleAccount("U5")

    def test_shared_email_picks_oldest_and_warns(self, provider, make_account, caplog):
        make_account("NEWER", email="shared@example.com",
                     created_at=datetime(2025, 6, 1, tzinfo=timezone.utc))
        make_account("OLDER", email="shared@example.com",
                     created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

        with caplog.at_level(logging.WARNING, logger="billing_sync.services.identity_service"):
            result = resolve({"customer_email": "shared@example.com"}, provider)

        assert result == SingleAccount("OLDER")
        assert "matches 2 accounts" in caplog.text

    def test_unknown_email_unresolved(self, provider):
        result = resolve({"customer_email": "nobody@example.com"}, provider)
        assert isinstance(result, Unresolved)
        assert result.reason == "no_account_for_email"

    def test_nothing_to_go_on(self, provider):
        result = resolve({"id": "sub_x", "customer": "cus_missing"}, provider)
        assert isinstance(result, Unresolved)
        assert result.reason == "no_account_reference"
        assert provider.calls == ["cus_missing"]
