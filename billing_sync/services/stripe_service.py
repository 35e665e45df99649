"""Stripe service — signature verification and Stripe API callbacks.

Responsible for:
- Verifying inbound webhook signatures against the raw request bytes
- Looking up a Stripe customer's email for the legacy identity path
- Reading subscription fields whose location moved between API versions
"""

import json
import logging
from datetime import datetime, timezone

import stripe

from billing_sync.errors import SignatureInvalid, TransientStoreError

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Webhook Verification
# ──────────────────────────────────────────────

def verify_webhook_signature(raw_body, sig_header, secret):
    """Verify a Stripe webhook signature and decode the event.

    `raw_body` must be the exact bytes received; the signature covers them.
    Returns the event as a plain dict.
    Raises SignatureInvalid on a missing/invalid signature or a bad body.
    """
    if not sig_header:
        raise SignatureInvalid("Missing signature")
    if not secret:
        raise SignatureInvalid("Webhook secret is not configured")

    try:
        stripe.Webhook.construct_event(raw_body, sig_header, secret)
    except stripe.SignatureVerificationError as e:
        raise SignatureInvalid(f"Invalid signature: {e}") from e
    except ValueError as e:
        raise SignatureInvalid(f"Invalid payload: {e}") from e

    try:
        event = json.loads(raw_body)
    except ValueError as e:
        raise SignatureInvalid(f"Invalid payload: {e}") from e

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise SignatureInvalid("Invalid payload: missing event id or type")
    return event


# ──────────────────────────────────────────────
# Stripe API Client
# ──────────────────────────────────────────────

class StripeProvider:
    """Read-only Stripe callbacks used while reconciling.

    Built once in create_app() and stored in app.extensions["billing_provider"].
    """

    def __init__(self, api_key, timeout=10, client=None):
        if client is None:
            client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout),
            )
        self._client = client

    def get_customer_email(self, customer_id):
        """Return the email registered on a Stripe customer, or None.

        A missing or deleted customer returns None. Network and API
        failures raise TransientStoreError so the event is retried.
        """
        if not customer_id:
            return None

        try:
            customer = self._client.customers.retrieve(customer_id)
        except stripe.InvalidRequestError as e:
            logger.warning(f"Stripe customer {customer_id} lookup rejected: {e}")
            return None
        except stripe.StripeError as e:
            raise TransientStoreError(
                f"Stripe customer lookup failed for {customer_id}: {e}"
            ) from e

        if getattr(customer, "deleted", False):
            logger.warning(f"Stripe customer {customer_id} is deleted")
            return None
        return getattr(customer, "email", None) or None


# ──────────────────────────────────────────────
# Payload Helpers
# ──────────────────────────────────────────────

def _to_datetime(ts):
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def extract_period_end(sub_data):
    """Extract current_period_end from a Stripe subscription object.

    In newer Stripe API versions, current_period_end has moved from the
    subscription top level to items.data[0].current_period_end.
    This helper checks both locations.

    Returns a timezone-aware datetime or None.
    """
    ts = sub_data.get("current_period_end")

    if not ts:
        items = sub_data.get("items") or {}
        if items.get("data"):
            ts = items["data"][0].get("current_period_end")

    return _to_datetime(ts)


def extract_invoice_period_end(invoice):
    """Period end of the first invoice line, as a datetime or None."""
    lines = invoice.get("lines") or {}
    for line in lines.get("data") or []:
        period = line.get("period") or {}
        if period.get("end"):
            return _to_datetime(period["end"])
    return None


def extract_event_created(event):
    """Stripe's creation timestamp for the event, as a datetime or None."""
    return _to_datetime(event.get("created"))


PREMIUM_VOICE_FEATURE = "premium_voice"


def has_premium_voice_item(sub_data, premium_product_id=None):
    """True if any line item bills the Premium Voice add-on.

    Matches the configured product ID, or an expanded product whose
    metadata.feature is "premium_voice".
    """
    items = sub_data.get("items") or {}
    for item in items.get("data") or []:
        product = (item.get("price") or {}).get("product")
        if isinstance(product, dict):
            if premium_product_id and product.get("id") == premium_product_id:
                return True
            if (product.get("metadata") or {}).get("feature") == PREMIUM_VOICE_FEATURE:
                return True
        elif premium_product_id and product == premium_product_id:
            return True
    return False
