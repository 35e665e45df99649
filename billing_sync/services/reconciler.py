"""Fan-out reconciler — write an entitlement change to one or many accounts.

Single account: one write keyed by account ID.
Family plan: the same write for every listed account, plus revocation of
any account still linked to the subscription but missing from the list
(that is how a removed family member loses access; Stripe sends no
"member removed" event).

Each account is written and committed on its own. A failure on one account
never rolls back another; failures are reported per account so an operator
can replay the event.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from billing_sync.extensions import db
from billing_sync.models.account import Account
from billing_sync.services.billing_service import log_billing_audit
from billing_sync.services.identity_service import MultiAccount, SingleAccount

logger = logging.getLogger(__name__)

UNCHANGED = object()  # sentinel: leave the column as it is

APPLIED = "applied"
NOOP = "unchanged"
STALE = "stale"
FAILED = "failed"

ACCOUNT_NOT_FOUND = "account_not_found"


@dataclass(frozen=True)
class EntitlementChange:
    """Target entitlement columns for one event.

    Fields left as UNCHANGED are not written. `expire_now` sets
    entitlement_expires_at to the current time unless the account is already
    canceled with an expiry.
    """

    status: str
    subscription_id: object = UNCHANGED
    customer_id: object = UNCHANGED
    expires_at: object = UNCHANGED
    expire_now: bool = False
    premium_voice: object = UNCHANGED
    premium_voice_expires_at: object = UNCHANGED
    stripe_event_id: str = None
    event_created_at: datetime = None
    action: str = "entitlement.updated"

    def revocation(self):
        """The change applied to accounts dropped from a family plan."""
        return EntitlementChange(
            status=Account.CANCELED,
            subscription_id=None,
            expire_now=True,
            premium_voice=False,
            premium_voice_expires_at=None,
            stripe_event_id=self.stripe_event_id,
            event_created_at=self.event_created_at,
            action="entitlement.revoked",
        )


@dataclass
class FanOutResult:
    applied: list = field(default_factory=list)
    unchanged: list = field(default_factory=list)
    stale: list = field(default_factory=list)
    revoked: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)

    @property
    def ok(self):
        return not self.failed

    def record(self, account_id, outcome, reason=None, revoke=False):
        if outcome == FAILED:
            self.failed[account_id] = reason
        elif outcome == STALE:
            self.stale.append(account_id)
        elif outcome == NOOP:
            self.unchanged.append(account_id)
        elif revoke:
            self.revoked.append(account_id)
        else:
            self.applied.append(account_id)

    def summary(self):
        return {
            "applied": sorted(self.applied),
            "unchanged": sorted(self.unchanged),
            "stale": sorted(self.stale),
            "revoked": sorted(self.revoked),
            "failed": dict(sorted(self.failed.items())),
        }


class _AccountNotFound(Exception):
    pass


def _as_utc(value):
    if value is None or not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _target_values(account, change, now):
    values = {"entitlement_status": change.status}
    if change.subscription_id is not UNCHANGED:
        values["billing_subscription_id"] = change.subscription_id
    if change.customer_id is not UNCHANGED and change.customer_id:
        values["billing_customer_id"] = change.customer_id
    if change.expire_now:
        already_expired = (
            account.entitlement_status == Account.CANCELED
            and account.entitlement_expires_at is not None
        )
        if not already_expired:
            values["entitlement_expires_at"] = now
    elif change.expires_at is not UNCHANGED:
        values["entitlement_expires_at"] = change.expires_at
    if change.premium_voice is not UNCHANGED:
        values["premium_voice_enabled"] = bool(change.premium_voice)
    if change.premium_voice_expires_at is not UNCHANGED:
        values["premium_voice_expires_at"] = change.premium_voice_expires_at
    return values


def write_account(account_id, change, enforce_order=False):
    """Apply `change` to one account and commit.

    Returns APPLIED, NOOP (values already match) or STALE (older than the
    last applied event, only when enforce_order is on).
    Raises _AccountNotFound or SQLAlchemy errors.
    """
    account = db.session.get(Account, account_id)
    if account is None:
        raise _AccountNotFound(account_id)

    event_at = _as_utc(change.event_created_at)
    synced_at = _as_utc(account.billing_synced_at)
    if enforce_order and event_at and synced_at and event_at < synced_at:
        logger.info(
            f"Skipping stale event {change.stripe_event_id} for account "
            f"{account_id} ({event_at.isoformat()} < {synced_at.isoformat()})"
        )
        return STALE

    now = datetime.now(timezone.utc)
    changed = {
        name: value
        for name, value in _target_values(account, change, now).items()
        if _as_utc(getattr(account, name)) != _as_utc(value)
    }
    if event_at and (synced_at is None or event_at > synced_at):
        changed["billing_synced_at"] = event_at

    if not changed:
        return NOOP

    previous_status = account.entitlement_status
    for name, value in changed.items():
        setattr(account, name, value)

    log_billing_audit(account.id, change.action, change.stripe_event_id, {
        "from": previous_status,
        "to": account.entitlement_status,
        "billing_subscription_id": account.billing_subscription_id,
        "fields": sorted(changed),
    })
    db.session.commit()
    return APPLIED


def apply_to_account(account_id, change, enforce_order=False):
    """write_account() that reports failures instead of raising.

    Returns (outcome, reason); reason is None unless outcome is FAILED.
    """
    try:
        return write_account(account_id, change, enforce_order), None
    except _AccountNotFound:
        db.session.rollback()
        logger.warning(f"Account {account_id} not found for event {change.stripe_event_id}")
        return FAILED, ACCOUNT_NOT_FOUND
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Store error writing account {account_id}: {e}", exc_info=True)
        return FAILED, f"store_error: {e.__class__.__name__}"
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error writing account {account_id}: {e}", exc_info=True)
        return FAILED, f"error: {e.__class__.__name__}"


def _apply_in_app_context(app, account_id, change, enforce_order):
    # Each worker gets its own app context and therefore its own session.
    with app.app_context():
        return apply_to_account(account_id, change, enforce_order)


def _run_writes(jobs, max_workers, enforce_order, deadline=None):
    """Run (account_id, change) writes inline or on a thread pool.

    Returns {account_id: (outcome, reason)}.
    """
    outcomes = {}
    if max_workers <= 1 or len(jobs) <= 1:
        for account_id, change in jobs:
            if deadline is not None and deadline.expired():
                outcomes[account_id] = (FAILED, "timeout")
                continue
            outcomes[account_id] = apply_to_account(account_id, change, enforce_order)
        return outcomes

    app = current_app._get_current_object()
    executor = ThreadPoolExecutor(
        max_workers=min(max_workers, len(jobs)), thread_name_prefix="fanout"
    )
    try:
        futures = {
            executor.submit(_apply_in_app_context, app, account_id, change, enforce_order): account_id
            for account_id, change in jobs
        }
        timeout = deadline.remaining() if deadline is not None else None
        done, not_done = wait(futures, timeout=timeout)
        for future in done:
            outcomes[futures[future]] = future.result()
        for future in not_done:
            outcomes[futures[future]] = (FAILED, "timeout")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return outcomes


def find_dropped_members(subscription_id, listed_ids):
    """Accounts linked to a subscription but absent from its member list."""
    if not subscription_id:
        return []
    rows = (
        Account.query
        .filter(Account.billing_subscription_id == subscription_id)
        .filter(~Account.id.in_(list(listed_ids)))
        .order_by(Account.id.asc())
        .all()
    )
    return [row.id for row in rows]


def reconcile(identity, change, max_workers=1, enforce_order=False, deadline=None):
    """Apply `change` to every account `identity` names.

    Returns a FanOutResult. Never raises for per-account failures.
    """
    result = FanOutResult()

    if isinstance(identity, SingleAccount):
        outcome, reason = apply_to_account(identity.account_id, change, enforce_order)
        result.record(identity.account_id, outcome, reason)
        return result

    if not isinstance(identity, MultiAccount):
        raise TypeError(f"Cannot reconcile {identity!r}")

    jobs = [(account_id, change) for account_id in identity.account_ids]

    subscription_id = change.subscription_id
    if subscription_id is not UNCHANGED:
        dropped = find_dropped_members(subscription_id, identity.account_ids)
        # Release the read transaction before workers take their own sessions.
        db.session.commit()
        if dropped:
            logger.info(
                f"Revoking {len(dropped)} account(s) dropped from subscription "
                f"{subscription_id}: {', '.join(dropped)}"
            )
        revocation = change.revocation()
        jobs.extend((account_id, revocation) for account_id in dropped)

    revoked_ids = {account_id for account_id, job in jobs if job is not change}
    outcomes = _run_writes(jobs, max_workers, enforce_order, deadline)
    for account_id, _ in jobs:
        outcome, reason = outcomes[account_id]
        result.record(account_id, outcome, reason, revoke=account_id in revoked_ids)

    logger.info(f"Fan-out for event {change.stripe_event_id}: {result.summary()}")
    return result
