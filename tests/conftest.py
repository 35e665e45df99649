"""Shared test fixtures for the billing sync test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake Stripe provider)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- provider: the fake Stripe provider, reset per test
- make_account: factory for Account rows
- load_account: re-read an Account after a request wrote it
- make_event / post_event: build and deliver signed webhook events
"""

import hashlib
import hmac
import json
import time

import pytest

from billing_sync import create_app
from billing_sync.extensions import db as _db
from billing_sync.models.account import Account


WEBHOOK_SECRET = "whsec_test_fake"


class FakeProvider:
    """Stands in for StripeProvider; customer emails come from a dict."""

    def __init__(self):
        self.emails = {}
        self.calls = []

    def get_customer_email(self, customer_id):
        self.calls.append(customer_id)
        return self.emails.get(customer_id)


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for `payload` (bytes)."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture(scope="session")
def fake_provider():
    return FakeProvider()


@pytest.fixture(scope="session")
def app(fake_provider):
    """Create the Flask application configured for testing."""
    app = create_app("testing", billing_provider=fake_provider)
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def provider(fake_provider):
    fake_provider.emails.clear()
    fake_provider.calls.clear()
    return fake_provider


@pytest.fixture
def make_account(app, db_session):
    """Create an Account and return its ID."""

    def _make(account_id, email=None, **fields):
        account = Account(
            id=account_id,
            email=email or f"{account_id.lower()}@example.com",
            **fields,
        )
        _db.session.add(account)
        _db.session.commit()
        return account.id

    return _make


@pytest.fixture
def load_account(db_session):
    """Fetch an Account fresh from the database."""

    def _load(account_id):
        _db.session.expire_all()
        return _db.session.get(Account, account_id)

    return _load


@pytest.fixture
def make_event():
    """Build a Stripe event dict around a data object."""

    def _make(event_id, event_type, obj, created=None):
        return {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": created or int(time.time()),
            "livemode": False,
            "data": {"object": obj},
        }

    return _make


@pytest.fixture
def sign():
    """Signature header builder for hand-made requests."""
    return sign_payload


@pytest.fixture
def post_event(client):
    """POST a signed event to /stripe/webhooks and return the response."""

    def _post(event, secret=WEBHOOK_SECRET):
        payload = json.dumps(event).encode("utf-8")
        return client.post(
            "/stripe/webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret)},
        )

    return _post
