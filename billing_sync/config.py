import os


def _env_flag(name):
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def engine_options(database_url, pool_timeout=10, statement_timeout_ms=15000):
    """SQLAlchemy engine options with every datastore wait bounded.

    pool_timeout caps the wait for a pooled connection. On Postgres the
    connect and statement timeouts cap a hung server, so one stuck write
    cannot outlive the webhook handler deadline.
    """
    options = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": pool_timeout,
    }
    if (database_url or "").startswith("postgresql"):
        options["connect_args"] = {
            "connect_timeout": max(1, int(pool_timeout)),
            "options": f"-c statement_timeout={int(statement_timeout_ms)}",
        }
    return options


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")

    # --- Timeouts ---
    # HTTP timeout for callbacks to Stripe (customer email lookup).
    STRIPE_HTTP_TIMEOUT_SECONDS = float(
        os.environ.get("STRIPE_HTTP_TIMEOUT_SECONDS", 10)
    )
    # Upper bound for one webhook handler run. A run that exceeds it is
    # recorded as failed and the provider redelivers.
    WEBHOOK_HANDLER_TIMEOUT_SECONDS = float(
        os.environ.get("WEBHOOK_HANDLER_TIMEOUT_SECONDS", 20)
    )

    # --- Fan-out ---
    # Worker threads for family-plan writes. 1 = write inline in the request.
    FANOUT_MAX_WORKERS = int(os.environ.get("FANOUT_MAX_WORKERS", 4))

    # --- Ordering ---
    # Off: last write wins (Stripe is the source of truth).
    # On: skip writes from events older than the account's last applied event.
    BILLING_ENFORCE_EVENT_ORDER = _env_flag("BILLING_ENFORCE_EVENT_ORDER")

    # --- Add-ons ---
    # Stripe product ID of the Premium Voice add-on line item.
    PREMIUM_VOICE_PRODUCT_ID = os.environ.get("PREMIUM_VOICE_PRODUCT_ID")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DB_POOL_TIMEOUT_SECONDS = float(os.environ.get("DB_POOL_TIMEOUT_SECONDS", 10))
    DB_STATEMENT_TIMEOUT_MS = int(os.environ.get("DB_STATEMENT_TIMEOUT_MS", 15000))
    SQLALCHEMY_ENGINE_OPTIONS = engine_options(
        SQLALCHEMY_DATABASE_URI, DB_POOL_TIMEOUT_SECONDS, DB_STATEMENT_TIMEOUT_MS
    )

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing: in-memory SQLite, fan-out written inline."""

    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    FANOUT_MAX_WORKERS = 1  # in-memory SQLite shares one connection
    BILLING_ENFORCE_EVENT_ORDER = False  # override per-test as needed
    PREMIUM_VOICE_PRODUCT_ID = "prod_premium_voice_test"
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode; everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
