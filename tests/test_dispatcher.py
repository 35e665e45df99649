"""Tests for event-type dispatch."""

from unittest.mock import MagicMock, patch

import pytest

from billing_sync.services import dispatcher
from billing_sync.services.dispatcher import HANDLERS, HandlerKind, classify, dispatch


@pytest.mark.parametrize("event_type, kind", [
    ("checkout.session.completed", HandlerKind.CHECKOUT_COMPLETED),
    ("customer.subscription.created", HandlerKind.SUBSCRIPTION_UPSERTED),
    ("customer.subscription.updated", HandlerKind.SUBSCRIPTION_UPSERTED),
    ("invoice.paid", HandlerKind.INVOICE_PAID),
    ("invoice.payment_succeeded", HandlerKind.INVOICE_PAID),
    ("invoice.payment_failed", HandlerKind.PAYMENT_FAILED),
    ("customer.subscription.deleted", HandlerKind.SUBSCRIPTION_DELETED),
    ("customer.created", HandlerKind.UNHANDLED),
    ("", HandlerKind.UNHANDLED),
    (None, HandlerKind.UNHANDLED),
])
def test_classify(event_type, kind):
    assert classify(event_type) is kind


def test_every_kind_has_a_handler():
    assert set(HANDLERS) == set(HandlerKind)


def test_dispatch_routes_to_handler():
    handler = MagicMock(return_value="result")
    ctx = MagicMock()
    event = {"id": "evt_1", "type": "invoice.payment_failed"}

    with patch.dict(dispatcher.HANDLERS, {HandlerKind.PAYMENT_FAILED: handler}):
        kind, result = dispatch(event, ctx)

    assert kind is HandlerKind.PAYMENT_FAILED
    assert result == "result"
    handler.assert_called_once_with(event, ctx)


def test_unhandled_returns_nothing():
    kind, result = dispatch({"id": "evt_2", "type": "payout.paid"}, MagicMock())
    assert kind is HandlerKind.UNHANDLED
    assert result is None
