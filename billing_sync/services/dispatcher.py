"""Event dispatcher — Stripe event type -> handler.

The set of handler kinds is closed. New Stripe event types fall to
UNHANDLED and are acknowledged.
"""

import enum

from billing_sync.services import handlers


class HandlerKind(enum.Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_UPSERTED = "subscription_upserted"
    INVOICE_PAID = "invoice_paid"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    UNHANDLED = "unhandled"


EVENT_KINDS = {
    "checkout.session.completed": HandlerKind.CHECKOUT_COMPLETED,
    "customer.subscription.created": HandlerKind.SUBSCRIPTION_UPSERTED,
    "customer.subscription.updated": HandlerKind.SUBSCRIPTION_UPSERTED,
    "customer.subscription.paused": HandlerKind.SUBSCRIPTION_UPSERTED,
    "customer.subscription.resumed": HandlerKind.SUBSCRIPTION_UPSERTED,
    "invoice.paid": HandlerKind.INVOICE_PAID,
    "invoice.payment_succeeded": HandlerKind.INVOICE_PAID,
    "invoice.payment_failed": HandlerKind.PAYMENT_FAILED,
    "customer.subscription.deleted": HandlerKind.SUBSCRIPTION_DELETED,
}

HANDLERS = {
    HandlerKind.CHECKOUT_COMPLETED: handlers.handle_checkout_completed,
    HandlerKind.SUBSCRIPTION_UPSERTED: handlers.handle_subscription_upserted,
    HandlerKind.INVOICE_PAID: handlers.handle_invoice_paid,
    HandlerKind.PAYMENT_FAILED: handlers.handle_payment_failed,
    HandlerKind.SUBSCRIPTION_DELETED: handlers.handle_subscription_deleted,
    HandlerKind.UNHANDLED: handlers.handle_unhandled,
}

_missing = set(HandlerKind) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler registered for {sorted(k.name for k in _missing)}")


def classify(event_type):
    """Map a Stripe event type to its HandlerKind (UNHANDLED by default)."""
    return EVENT_KINDS.get(event_type, HandlerKind.UNHANDLED)


def dispatch(event, ctx):
    """Run the handler for `event`. Returns (kind, handler result)."""
    kind = classify(event.get("type"))
    return kind, HANDLERS[kind](event, ctx)
