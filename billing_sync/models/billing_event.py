"""Billing event model (idempotency ledger).

Every webhook delivery is recorded by its Stripe event ID before any
handler runs. The unique constraint on stripe_event_id is the only
serialization point between concurrent deliveries of the same event.

Rows move pending -> processed or pending -> failed, may go back to
pending when a failed event is redelivered, and are never deleted.
"""

import uuid

from billing_sync.extensions import db


class BillingEvent(db.Model):
    __tablename__ = "billing_events"

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
    STATUSES = [PENDING, PROCESSED, FAILED]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "customer.subscription.updated"
    payload = db.Column(db.JSON, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default=PENDING, index=True
    )  # pending | processed | failed
    error_message = db.Column(db.Text, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    event_created_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # Stripe's "created" timestamp for the event
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<BillingEvent {self.stripe_event_id} ({self.status})>"
