"""Billing sync error taxonomy.

Every failure inside webhook processing ends up as one of these. The
webhook service reads `retryable` to decide between acknowledging the
delivery (200) and asking Stripe to redeliver (500).
"""


class BillingSyncError(Exception):
    """Base class. Unclassified failures are retried."""

    retryable = True
    http_status = 500


class SignatureInvalid(BillingSyncError):
    """Webhook body or signature header failed verification."""

    retryable = False
    http_status = 400


class DuplicateEvent(BillingSyncError):
    """The event ID is already in the ledger (concurrent first delivery)."""

    retryable = False
    http_status = 200


class UnresolvedIdentity(BillingSyncError):
    """No internal account matches the billing payload.

    Not retryable: redelivery cannot fix missing data, it needs an operator.
    """

    retryable = False
    http_status = 200


class TransientStoreError(BillingSyncError):
    """Datastore or Stripe API unavailable. Stripe should redeliver."""


class HandlerTimeout(TransientStoreError):
    """The handler ran past its deadline."""


class FanOutPartialFailure(TransientStoreError):
    """Some accounts of a family plan could not be written.

    The successful writes stay committed; `failed` maps account ID to reason.
    """

    def __init__(self, failed):
        self.failed = dict(failed)
        super().__init__(
            "Fan-out failed for accounts: "
            + ", ".join(f"{k} ({v})" for k, v in sorted(self.failed.items()))
        )
