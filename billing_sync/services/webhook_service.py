"""Webhook service — ledger gate, dispatch and finalization.

Flow for one verified event:
1. Ledger lookup. processed -> acknowledge without side effects.
2. First delivery -> insert a pending row (atomic). pending/failed row ->
   mark it for another attempt.
3. Dispatch to the handler under a deadline.
4. Finalize the row as processed or failed and pick the HTTP status.

HTTP status is the only thing Stripe's retry logic sees: 200 stops
redelivery, 5xx asks for it. Non-retryable failures (unresolved identity)
are acknowledged and left for an operator in the ledger and audit log.
"""

import logging

import stripe
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from billing_sync.errors import (
    BillingSyncError,
    DuplicateEvent,
    FanOutPartialFailure,
    TransientStoreError,
    UnresolvedIdentity,
)
from billing_sync.extensions import db
from billing_sync.models.billing_event import BillingEvent
from billing_sync.services import dispatcher, ledger_service
from billing_sync.services.billing_service import raise_operator_alert
from billing_sync.services.deadline import Deadline
from billing_sync.services.handlers import HandlerContext
from billing_sync.services.stripe_service import extract_event_created

logger = logging.getLogger(__name__)


def build_handler_context(app=None):
    """HandlerContext from app config and the injected Stripe provider."""
    app = app or current_app
    config = app.config
    return HandlerContext(
        provider=app.extensions["billing_provider"],
        deadline=Deadline(config["WEBHOOK_HANDLER_TIMEOUT_SECONDS"]),
        max_workers=config["FANOUT_MAX_WORKERS"],
        enforce_order=config["BILLING_ENFORCE_EVENT_ORDER"],
        premium_product_id=config.get("PREMIUM_VOICE_PRODUCT_ID"),
    )


def classify_error(exc):
    """Map any exception raised by a handler to a BillingSyncError.

    Unknown failures default to retryable.
    """
    if isinstance(exc, BillingSyncError):
        return exc
    if isinstance(exc, SQLAlchemyError):
        return TransientStoreError(f"Datastore error: {exc.__class__.__name__}: {exc}")
    if isinstance(exc, stripe.StripeError):
        return TransientStoreError(f"Stripe error: {exc.__class__.__name__}: {exc}")
    return TransientStoreError(f"Unexpected {exc.__class__.__name__}: {exc}")


def handle_webhook_event(event, ctx=None):
    """Process a verified Stripe event.

    Returns (http_status: int, body: dict).
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency gate ---
    try:
        existing = ledger_service.lookup(event_id)
        if existing and existing.status == BillingEvent.PROCESSED:
            logger.info(f"Duplicate webhook event {event_id}, skipping")
            return 200, {"status": "already_processed"}

        if existing:
            logger.info(
                f"Re-attempting {event_type} {event_id} "
                f"(was {existing.status}, retry {existing.retry_count + 1})"
            )
            ledger_service.mark_retry(existing)
        else:
            ledger_service.insert_pending(
                event_id, event_type, event, extract_event_created(event)
            )
    except DuplicateEvent as e:
        return e.http_status, {"status": "already_processed"}
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Ledger unavailable for {event_id}: {e}", exc_info=True)
        return 500, {"error": "ledger_unavailable"}

    return run_handler(event, ctx or build_handler_context())


def run_handler(event, ctx):
    """Dispatch a ledgered event and finalize its row."""
    event_id = event["id"]
    event_type = event["type"]

    try:
        kind, result = dispatcher.dispatch(event, ctx)
    except Exception as e:
        db.session.rollback()
        return _finalize_failure(event, classify_error(e))

    if result is not None:
        logger.info(f"Processed {event_type} {event_id}: {result.summary()}")

    try:
        ledger_service.finalize(event_id, BillingEvent.PROCESSED)
    except SQLAlchemyError as e:
        # Row stays pending; the next delivery re-runs the idempotent handler.
        db.session.rollback()
        logger.error(f"Could not finalize {event_id}: {e}", exc_info=True)
        return 500, {"error": "ledger_unavailable"}

    if kind is dispatcher.HandlerKind.UNHANDLED:
        return 200, {"status": "ignored"}
    return 200, {"status": "processed"}


def _finalize_failure(event, error):
    event_id = event["id"]
    event_type = event["type"]
    message = str(error) or error.__class__.__name__

    if isinstance(error, UnresolvedIdentity):
        raise_operator_alert("alert.unresolved_identity", event_id, {
            "event_type": event_type,
            "message": message,
        })
    elif isinstance(error, FanOutPartialFailure):
        raise_operator_alert("alert.fanout_partial_failure", event_id, {
            "event_type": event_type,
            "failed": error.failed,
        })
    else:
        logger.error(f"Error handling {event_type} {event_id}: {message}", exc_info=error)

    try:
        ledger_service.finalize(
            event_id, BillingEvent.FAILED, f"{error.__class__.__name__}: {message}"
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Could not record failure for {event_id}: {e}", exc_info=True)

    if error.retryable:
        return error.http_status, {"error": message}
    return error.http_status, {"status": "failed", "error": message}


def replay_event(stripe_event_id, ctx=None):
    """Re-run a ledgered event from its stored payload (operator tool).

    Returns (http_status, body) as if the event had been redelivered.
    Raises LookupError if the event is not in the ledger.
    """
    row = ledger_service.lookup(stripe_event_id)
    if row is None:
        raise LookupError(f"No ledger row for {stripe_event_id}")

    ledger_service.mark_retry(row)
    return run_handler(row.payload, ctx or build_handler_context())
