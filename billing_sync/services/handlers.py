"""Event handlers — one per HandlerKind.

Each handler turns a Stripe event into an EntitlementChange, resolves the
account(s) it refers to and hands both to the fan-out reconciler. Writes
are keyed by account ID, never by event ID, so re-running a handler for a
redelivered event is safe.
"""

import logging
from dataclasses import dataclass

from billing_sync.errors import FanOutPartialFailure, UnresolvedIdentity
from billing_sync.models.account import Account
from billing_sync.services.billing_service import has_premium_voice, map_provider_status
from billing_sync.services.identity_service import Unresolved, resolve
from billing_sync.services.reconciler import (
    ACCOUNT_NOT_FOUND,
    UNCHANGED,
    EntitlementChange,
    reconcile,
)
from billing_sync.services.stripe_service import (
    extract_event_created,
    extract_invoice_period_end,
    extract_period_end,
    has_premium_voice_item,
)

logger = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    """Collaborators and limits for one handler run."""

    provider: object
    deadline: object
    max_workers: int = 1
    enforce_order: bool = False
    premium_product_id: str = None


# ──────────────────────────────────────────────
# Payload helpers
# ──────────────────────────────────────────────

def _object(event):
    return (event.get("data") or {}).get("object") or {}


def _id_of(value):
    if isinstance(value, dict):
        return value.get("id")
    return value


def _customer_id(billing_object):
    return _id_of(billing_object.get("customer"))


def _invoice_subscription_id(invoice):
    sub_id = _id_of(invoice.get("subscription"))
    if not sub_id:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        sub_id = _id_of(details.get("subscription"))
    return sub_id


def _or_unchanged(value):
    return value if value else UNCHANGED


def _apply(event, billing_object, change, ctx):
    """Resolve the account(s) for `billing_object` and write `change`.

    Raises UnresolvedIdentity when no account matches (or every target
    account is missing) and FanOutPartialFailure when some writes failed.
    """
    ctx.deadline.check("identity resolution")
    identity = resolve(billing_object, ctx.provider)
    if isinstance(identity, Unresolved):
        raise UnresolvedIdentity(
            f"{event.get('type')} {billing_object.get('id')}: {identity.reason} {identity.details}"
        )

    ctx.deadline.check("fan-out")
    result = reconcile(
        identity,
        change,
        max_workers=ctx.max_workers,
        enforce_order=ctx.enforce_order,
        deadline=ctx.deadline,
    )

    if result.failed:
        if all(reason == ACCOUNT_NOT_FOUND for reason in result.failed.values()):
            raise UnresolvedIdentity(
                f"{event.get('type')} {billing_object.get('id')}: unknown account(s) "
                + ", ".join(sorted(result.failed))
            )
        raise FanOutPartialFailure(result.failed)
    return result


def _change(event, status, **fields):
    return EntitlementChange(
        status=status,
        stripe_event_id=event.get("id"),
        event_created_at=extract_event_created(event),
        **fields,
    )


# ──────────────────────────────────────────────
# Handlers
# ──────────────────────────────────────────────

def handle_checkout_completed(event, ctx):
    """checkout.session.completed -> active, link subscription + customer."""
    session = _object(event)
    if session.get("mode") not in (None, "subscription"):
        logger.info(f"Checkout {session.get('id')} is mode={session.get('mode')}, nothing to sync")
        return None

    subscription_id = _id_of(session.get("subscription"))
    if not subscription_id:
        logger.warning(f"checkout.session.completed {session.get('id')} has no subscription")
        return None

    change = _change(
        event,
        Account.ACTIVE,
        subscription_id=subscription_id,
        customer_id=_or_unchanged(_customer_id(session)),
        expires_at=None,
    )
    return _apply(event, session, change, ctx)


def handle_subscription_upserted(event, ctx):
    """customer.subscription.created / updated -> mapped status + period end."""
    sub = _object(event)
    status = map_provider_status(sub.get("status"))

    period_end = extract_period_end(sub)
    addon_billed = has_premium_voice_item(sub, ctx.premium_product_id)

    change = _change(
        event,
        status,
        subscription_id=sub.get("id"),
        customer_id=_or_unchanged(_customer_id(sub)),
        expires_at=period_end,
        premium_voice=has_premium_voice(addon_billed, status),
        premium_voice_expires_at=period_end if addon_billed else None,
    )
    return _apply(event, sub, change, ctx)


def handle_invoice_paid(event, ctx):
    """invoice.paid -> active through the paid period."""
    invoice = _object(event)
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info(f"Invoice {invoice.get('id')} is not for a subscription, nothing to sync")
        return None

    change = _change(
        event,
        Account.ACTIVE,
        subscription_id=subscription_id,
        customer_id=_or_unchanged(_customer_id(invoice)),
        expires_at=_or_unchanged(extract_invoice_period_end(invoice)),
    )
    return _apply(event, invoice, change, ctx)


def handle_payment_failed(event, ctx):
    """invoice.payment_failed -> past_due."""
    invoice = _object(event)
    change = _change(
        event,
        Account.PAST_DUE,
        subscription_id=_or_unchanged(_invoice_subscription_id(invoice)),
        customer_id=_or_unchanged(_customer_id(invoice)),
    )
    return _apply(event, invoice, change, ctx)


def handle_subscription_deleted(event, ctx):
    """customer.subscription.deleted -> canceled, expires now, add-ons off."""
    sub = _object(event)
    change = _change(
        event,
        Account.CANCELED,
        subscription_id=sub.get("id"),
        customer_id=_or_unchanged(_customer_id(sub)),
        expire_now=True,
        premium_voice=False,
        premium_voice_expires_at=None,
    )
    return _apply(event, sub, change, ctx)


def handle_unhandled(event, ctx):
    """Event types we do not sync. Acknowledged so Stripe stops retrying."""
    logger.info(f"Unhandled webhook event type {event.get('type')} ({event.get('id')})")
    return None
