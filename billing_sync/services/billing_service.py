"""Billing service — entitlement mapping and audit helpers.

Responsible for:
- Mapping Stripe subscription statuses to internal entitlement states
- Deriving the Premium Voice add-on flag from subscription line items
- Writing billing audit rows and operator alerts
"""

import logging

from billing_sync.extensions import db
from billing_sync.models.account import Account
from billing_sync.models.audit import AuditEvent

logger = logging.getLogger(__name__)


_STATUS_MAP = {
    "active": Account.ACTIVE,
    "trialing": Account.TRIALING,
    "past_due": Account.PAST_DUE,
    "canceled": Account.CANCELED,
    "unpaid": Account.CANCELED,
}


def map_provider_status(provider_status):
    """Map a Stripe subscription status to an entitlement state.

    Mapping:
        active             -> 'active'
        trialing           -> 'trialing'
        past_due           -> 'past_due'
        canceled / unpaid  -> 'canceled'
        anything else      -> 'free'

    Unknown statuses (incomplete, incomplete_expired, paused, new ones Stripe
    adds later) fall to 'free', never toward paid access.
    """
    return _STATUS_MAP.get(provider_status, Account.FREE)


def has_premium_voice(addon_billed, entitlement_status):
    """Premium Voice is on only while the add-on is billed and access is paid."""
    return bool(addon_billed) and entitlement_status in (Account.ACTIVE, Account.TRIALING)


def log_billing_audit(account_id, action, stripe_event_id=None, metadata=None):
    """Stage a billing audit event in the current session.

    The caller owns the commit so the audit row lands with the write it
    describes.
    """
    event = AuditEvent(
        account_id=account_id,
        stripe_event_id=stripe_event_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    return event


def raise_operator_alert(action, stripe_event_id, metadata=None):
    """Record an alert that needs a human and log it at error level.

    Committed on its own; an alert must survive a rollback of the handler's
    session.
    """
    logger.error(f"Billing alert {action} for event {stripe_event_id}: {metadata or {}}")
    try:
        log_billing_audit(None, action, stripe_event_id, metadata)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Failed to record billing alert for {stripe_event_id}: {e}")
