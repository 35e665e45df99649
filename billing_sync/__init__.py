import os
import logging

import click
from flask import Flask, jsonify

from billing_sync.config import config_by_name
from billing_sync.extensions import db, migrate


def create_app(config_name=None, billing_provider=None):
    """Application factory.

    `billing_provider` replaces the Stripe-backed provider (tests, scripts).
    """

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from billing_sync import models  # noqa: F401

    # --- Stripe client, built once per process ---
    if billing_provider is None:
        from billing_sync.services.stripe_service import StripeProvider
        billing_provider = StripeProvider(
            app.config["STRIPE_SECRET_KEY"],
            timeout=app.config["STRIPE_HTTP_TIMEOUT_SECONDS"],
        )
    app.extensions["billing_provider"] = billing_provider

    # --- Register blueprints ---
    from billing_sync.blueprints.webhooks import webhooks_bp

    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "not_found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "method_not_allowed"}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "internal_error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""
    from billing_sync.models.account import Account
    from billing_sync.models.billing_event import BillingEvent

    @app.cli.command("billing-events")
    @click.option("--status", type=click.Choice(BillingEvent.STATUSES),
                  default=None, help="Only show rows with this status.")
    @click.option("--limit", default=50, show_default=True, help="Max rows to show.")
    def billing_events(status, limit):
        """List recent webhook ledger rows.

        Usage:
            flask billing-events
            flask billing-events --status failed
        """
        from billing_sync.services.ledger_service import list_events

        rows = list_events(status=status, limit=limit)
        if not rows:
            click.echo("No billing events.")
            return

        for row in rows:
            received = row.received_at.isoformat() if row.received_at else "-"
            click.echo(
                f"{row.stripe_event_id}  {row.event_type:<35} {row.status:<9} "
                f"retries={row.retry_count}  received={received}"
            )
            if row.error_message:
                click.echo(f"    error: {row.error_message}")

    @app.cli.command("replay-event")
    @click.argument("event_id")
    def replay_event_command(event_id):
        """Re-run a ledgered webhook event from its stored payload.

        Safe to repeat: entitlement writes are keyed by account, not event.

        Usage:
            flask replay-event evt_1Abc...
        """
        from billing_sync.services.webhook_service import replay_event

        try:
            status_code, body = replay_event(event_id)
        except LookupError as e:
            raise click.ClickException(str(e))

        click.echo(f"{event_id}: HTTP {status_code} {body}")
        if status_code >= 500:
            raise click.ClickException("Replay failed; see ledger error_message.")

    @app.cli.command("set-entitlement")
    @click.argument("account_id")
    @click.argument("status", type=click.Choice(Account.STATUSES))
    def set_entitlement(account_id, status):
        """Manually override an account's entitlement status.

        The next Stripe event for the account overwrites it again.

        Usage:
            flask set-entitlement 3f2c... active
        """
        from billing_sync.services.reconciler import (
            ACCOUNT_NOT_FOUND,
            EntitlementChange,
            FAILED,
            apply_to_account,
        )

        change = EntitlementChange(status=status, action="entitlement.manual_override")
        outcome, reason = apply_to_account(account_id, change, enforce_order=False)
        if outcome == FAILED:
            if reason == ACCOUNT_NOT_FOUND:
                raise click.ClickException(f"Account not found: {account_id}")
            raise click.ClickException(f"Could not update {account_id}: {reason}")
        click.echo(f"{account_id}: {outcome} -> {status}")
