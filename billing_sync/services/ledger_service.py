"""Ledger service — the billing_events idempotency table.

The ledger gives at-most-once enqueue, not at-most-once side effect:
a processed row short-circuits redelivery, while pending or failed rows
let the handler run again.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from billing_sync.errors import DuplicateEvent
from billing_sync.extensions import db
from billing_sync.models.billing_event import BillingEvent

logger = logging.getLogger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 2000


def lookup(stripe_event_id):
    """Return the ledger row for an event ID, or None."""
    return BillingEvent.query.filter_by(stripe_event_id=stripe_event_id).first()


def insert_pending(stripe_event_id, event_type, payload, event_created_at=None):
    """Insert a pending row for a first delivery.

    Atomic: relies on the unique constraint on stripe_event_id. If a
    concurrent delivery inserted first, the IntegrityError is rolled back
    and DuplicateEvent is raised.
    """
    row = BillingEvent(
        stripe_event_id=stripe_event_id,
        event_type=event_type,
        payload=payload,
        status=BillingEvent.PENDING,
        event_created_at=event_created_at,
    )
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.info(f"Concurrent delivery of {stripe_event_id} already in ledger")
        raise DuplicateEvent(stripe_event_id) from e
    return row


def mark_retry(row):
    """Move a pending/failed row back to pending for another attempt."""
    row.status = BillingEvent.PENDING
    row.retry_count = (row.retry_count or 0) + 1
    row.error_message = None
    row.processed_at = None
    db.session.commit()
    return row


def finalize(stripe_event_id, status, error_message=None):
    """Record the outcome of a handler run on the ledger row."""
    if status not in (BillingEvent.PROCESSED, BillingEvent.FAILED):
        raise ValueError(f"Cannot finalize ledger row as {status!r}")

    row = lookup(stripe_event_id)
    if row is None:
        raise LookupError(f"No ledger row for {stripe_event_id}")

    row.status = status
    row.processed_at = datetime.now(timezone.utc)
    if error_message:
        row.error_message = error_message[:ERROR_MESSAGE_MAX_LENGTH]
    else:
        row.error_message = None
    db.session.commit()
    return row


def list_events(status=None, limit=50):
    """Most recent ledger rows, optionally filtered by status."""
    query = BillingEvent.query
    if status:
        query = query.filter_by(status=status)
    return (
        query.order_by(BillingEvent.received_at.desc(), BillingEvent.id.desc())
        .limit(limit)
        .all()
    )
