"""Identity service — find the account(s) a Stripe object refers to.

Resolution order:
1. Explicit account ID in metadata (or a checkout session's
   client_reference_id). Authoritative; lets one email own several
   subscriptions.
2. Family plan: metadata type == "multi_subscription" with a
   comma-separated profile_ids list.
3. Legacy fallback: the customer's email. If several accounts share it the
   oldest wins and a warning is logged. This ambiguity is a known
   limitation of email-keyed accounts and is kept as-is.
4. Nothing matched: Unresolved.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import func

from billing_sync.models.account import Account

logger = logging.getLogger(__name__)

ACCOUNT_ID_METADATA_KEYS = ("account_id", "supabase_user_id")
MULTI_SUBSCRIPTION_TYPE = "multi_subscription"
PROFILE_IDS_METADATA_KEY = "profile_ids"


@dataclass(frozen=True)
class SingleAccount:
    account_id: str


@dataclass(frozen=True)
class MultiAccount:
    account_ids: tuple


@dataclass(frozen=True)
class Unresolved:
    reason: str = ""
    details: dict = field(default_factory=dict, compare=False)


def extract_metadata(billing_object):
    """Metadata for a Stripe object.

    Invoices carry the subscription's metadata under subscription_details
    (or parent.subscription_details on newer API versions).
    """
    metadata = billing_object.get("metadata") or {}
    if metadata:
        return metadata

    details = billing_object.get("subscription_details") or {}
    if details.get("metadata"):
        return details["metadata"]

    parent = billing_object.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return details.get("metadata") or {}


def parse_profile_ids(raw):
    """Split a comma-separated ID list. Blanks and repeats are dropped."""
    ids = []
    for part in (raw or "").split(","):
        part = part.strip()
        if part and part not in ids:
            ids.append(part)
    return tuple(ids)


def _explicit_account_id(billing_object, metadata):
    for key in ACCOUNT_ID_METADATA_KEYS:
        value = (metadata.get(key) or "").strip()
        if value:
            return value
    if billing_object.get("object") == "checkout.session":
        return (billing_object.get("client_reference_id") or "").strip() or None
    return None


def _customer_email(billing_object, provider):
    email = billing_object.get("customer_email")
    if not email:
        email = (billing_object.get("customer_details") or {}).get("email")
    if not email:
        customer = billing_object.get("customer")
        if isinstance(customer, dict):
            email = customer.get("email")
            customer = customer.get("id")
        if not email and customer and provider is not None:
            email = provider.get_customer_email(customer)
    return email


def find_accounts_by_email(email):
    """Accounts registered under an email, oldest first (case-insensitive)."""
    return (
        Account.query
        .filter(func.lower(Account.email) == email.strip().lower())
        .order_by(Account.created_at.asc(), Account.id.asc())
        .all()
    )


def resolve(billing_object, provider=None):
    """Resolve a Stripe object to SingleAccount, MultiAccount or Unresolved.

    `provider` is a StripeProvider used only for the email fallback.
    Never raises for missing data; Stripe API failures propagate as
    TransientStoreError.
    """
    metadata = extract_metadata(billing_object)

    account_id = _explicit_account_id(billing_object, metadata)
    if account_id:
        return SingleAccount(account_id)

    if metadata.get("type") == MULTI_SUBSCRIPTION_TYPE:
        account_ids = parse_profile_ids(metadata.get(PROFILE_IDS_METADATA_KEY))
        if account_ids:
            return MultiAccount(account_ids)
        logger.warning(
            f"Multi subscription {billing_object.get('id')} has no profile_ids"
        )

    email = _customer_email(billing_object, provider)
    if not email:
        return Unresolved(
            "no_account_reference",
            {"object_id": billing_object.get("id"),
             "customer": billing_object.get("customer")},
        )

    accounts = find_accounts_by_email(email)
    if not accounts:
        return Unresolved("no_account_for_email", {"email": email})

    if len(accounts) > 1:
        logger.warning(
            f"Email {email} matches {len(accounts)} accounts; "
            f"using oldest account {accounts[0].id}"
        )
    return SingleAccount(accounts[0].id)
