"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events. Raw body is required for signature
verification.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from billing_sync.errors import SignatureInvalid
from billing_sync.services.stripe_service import verify_webhook_signature
from billing_sync.services.webhook_service import handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body bytes (the signature covers them exactly)
    2. Verify signature with STRIPE_WEBHOOK_SECRET; nothing is written on failure
    3. Pass to handle_webhook_event (idempotent via billing_events ledger)
    4. Return the status chosen by the webhook service
    """
    payload = request.get_data(cache=False)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), SignatureInvalid.http_status

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(
            payload, sig_header, current_app.config["STRIPE_WEBHOOK_SECRET"]
        )
    except SignatureInvalid as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), e.http_status

    # --- Process event (idempotent) ---
    status_code, body = handle_webhook_event(event)

    if status_code >= 500:
        logger.error(f"Webhook processing failed for {event['id']}: {body}")
    return jsonify(body), status_code
