# Models package: import all models here so Alembic can discover them.

from billing_sync.models.account import Account  # noqa: F401
from billing_sync.models.billing_event import BillingEvent  # noqa: F401
from billing_sync.models.audit import AuditEvent  # noqa: F401
