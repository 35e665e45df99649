"""Audit event model.

Logs every entitlement change written by the billing sync engine and every
operator alert (unresolved identity, partial fan-out failure).
"""

import uuid

from billing_sync.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    account_id = db.Column(
        db.String(36), db.ForeignKey("accounts.id"), nullable=True
    )
    stripe_event_id = db.Column(db.String(255), nullable=True, index=True)
    action = db.Column(db.String(255), nullable=False)  # e.g. "entitlement.updated"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    account = db.relationship("Account", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
