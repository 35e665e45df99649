"""Account model.

One row per learner profile. Created at signup by the surrounding
application with entitlement_status = "free"; after that the entitlement
columns are written only by the billing sync engine.

accounts.entitlement_status is the source of truth for access gating.
"""

import uuid

from billing_sync.extensions import db


class Account(db.Model):
    __tablename__ = "accounts"

    # -- Entitlement states --
    FREE = "free"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    STATUSES = [FREE, TRIALING, ACTIVE, PAST_DUE, CANCELED]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), nullable=False, index=True)
    entitlement_status = db.Column(
        db.String(20), nullable=False, default=FREE
    )  # free | trialing | active | past_due | canceled
    billing_subscription_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # e.g. "sub_1Abc...", shared by every member of a family plan
    billing_customer_id = db.Column(
        db.String(255), nullable=True
    )  # e.g. "cus_1Abc..."
    entitlement_expires_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )
    premium_voice_enabled = db.Column(db.Boolean, default=False)
    premium_voice_expires_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # end of the billed add-on period, None when not billed
    billing_synced_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # provider timestamp of the last event applied to this row
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    audit_events = db.relationship(
        "AuditEvent", back_populates="account", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Account {self.email} ({self.entitlement_status})>"
