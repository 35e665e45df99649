"""Tests for Stripe signature verification, the Stripe provider and payload helpers."""

import json
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import stripe

from billing_sync.errors import SignatureInvalid, TransientStoreError
from billing_sync.services.stripe_service import (
    StripeProvider,
    extract_invoice_period_end,
    extract_period_end,
    has_premium_voice_item,
    verify_webhook_signature,
)

SECRET = "whsec_unit"


class TestVerifyWebhookSignature:

    def test_valid_signature_returns_event_dict(self, sign):
        payload = json.dumps({"id": "evt_1", "type": "invoice.paid",
                              "data": {"object": {}}}).encode("utf-8")
        event = verify_webhook_signature(payload, sign(payload, SECRET), SECRET)
        assert event["id"] == "evt_1"
        assert event["type"] == "invoice.paid"

    def test_tampered_body(self, sign):
        payload = b'{"id": "evt_1", "type": "invoice.paid"}'
        header = sign(payload, SECRET)
        with pytest.raises(SignatureInvalid):
            verify_webhook_signature(payload.replace(b"paid", b"void"), header, SECRET)

    def test_missing_header(self):
        with pytest.raises(SignatureInvalid):
            verify_webhook_signature(b"{}", None, SECRET)

    def test_missing_secret(self, sign):
        with pytest.raises(SignatureInvalid):
            verify_webhook_signature(b"{}", sign(b"{}", SECRET), None)

    def test_event_without_id(self, sign):
        payload = b'{"type": "invoice.paid"}'
        with pytest.raises(SignatureInvalid):
            verify_webhook_signature(payload, sign(payload, SECRET), SECRET)


class TestStripeProvider:

    def _provider(self, **retrieve_kwargs):
        client = MagicMock()
        client.customers.retrieve = MagicMock(**retrieve_kwargs)
        return StripeProvider("sk_test_fake", client=client), client

    def test_returns_email(self):
        provider, client = self._provider(
            return_value=SimpleNamespace(email="parent@example.com", deleted=False)
        )
        assert provider.get_customer_email("cus_1") == "parent@example.com"
        client.customers.retrieve.assert_called_once_with("cus_1")

    def test_no_customer_id(self):
        provider, client = self._provider()
        assert provider.get_customer_email(None) is None
        client.customers.retrieve.assert_not_called()

    def test_deleted_customer(self):
        provider, _ = self._provider(
            return_value=SimpleNamespace(id="cus_1", deleted=True)
        )
        assert provider.get_customer_email("cus_1") is None

    def test_unknown_customer(self):
        provider, _ = self._provider(
            side_effect=stripe.InvalidRequestError("No such customer: 'cus_x'", "id")
        )
        assert provider.get_customer_email("cus_x") is None

    def test_connection_error_is_transient(self):
        provider, _ = self._provider(
            side_effect=stripe.APIConnectionError("Network down")
        )
        with pytest.raises(TransientStoreError):
            provider.get_customer_email("cus_1")


class TestPayloadHelpers:

    def test_period_end_top_level(self):
        assert extract_period_end({"current_period_end": 1798761600}) == datetime(
            2027, 1, 1, tzinfo=timezone.utc
        )

    def test_period_end_from_items(self):
        sub = {"items": {"data": [{"current_period_end": 1798761600}]}}
        assert extract_period_end(sub) == datetime(2027, 1, 1, tzinfo=timezone.utc)

    def test_period_end_missing(self):
        assert extract_period_end({}) is None

    def test_invoice_period_end(self):
        invoice = {"lines": {"data": [{"period": {"start": 1, "end": 1798761600}}]}}
        assert extract_invoice_period_end(invoice) == datetime(2027, 1, 1, tzinfo=timezone.utc)
        assert extract_invoice_period_end({}) is None

    def test_premium_voice_item_by_product_id(self):
        sub = {"items": {"data": [
            {"price": {"product": "prod_basic"}},
            {"price": {"product": "prod_voice"}},
        ]}}
        assert has_premium_voice_item(sub, "prod_voice") is True
        assert has_premium_voice_item(sub, "prod_other") is False
        assert has_premium_voice_item(sub, None) is False

    def test_premium_voice_item_by_expanded_product(self):
        sub = {"items": {"data": [
            {"price": {"product": {"id": "prod_voice", "metadata": {}}}},
        ]}}
        assert has_premium_voice_item(sub, "prod_voice") is True

    def test_premium_voice_item_by_feature_metadata(self):
        """Products tagged feature=premium_voice count without a configured ID."""
        sub = {"items": {"data": [
            {"price": {"product": {"id": "prod_new_voice",
                                   "metadata": {"feature": "premium_voice"}}}},
        ]}}
        assert has_premium_voice_item(sub) is True
        assert has_premium_voice_item({"items": {"data": []}}) is False
        assert has_premium_voice_item({}) is False
