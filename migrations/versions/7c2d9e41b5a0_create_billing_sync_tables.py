"""Create accounts, billing_events and audit_events tables

Revision ID: 7c2d9e41b5a0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c2d9e41b5a0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('accounts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('entitlement_status', sa.String(length=20), nullable=False, server_default='free'),
        sa.Column('billing_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('billing_customer_id', sa.String(length=255), nullable=True),
        sa.Column('entitlement_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('premium_voice_enabled', sa.Boolean(), nullable=True, server_default=sa.text('false')),
        sa.Column('premium_voice_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('billing_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'])
    op.create_index('ix_accounts_billing_subscription_id', 'accounts', ['billing_subscription_id'])

    op.create_table('billing_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('event_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_event_id')
    )
    op.create_index('ix_billing_events_status', 'billing_events', ['status'])

    op.create_table('audit_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('account_id', sa.String(length=36), nullable=True),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_events_stripe_event_id', 'audit_events', ['stripe_event_id'])


def downgrade():
    op.drop_index('ix_audit_events_stripe_event_id', table_name='audit_events')
    op.drop_table('audit_events')
    op.drop_index('ix_billing_events_status', table_name='billing_events')
    op.drop_table('billing_events')
    op.drop_index('ix_accounts_billing_subscription_id', table_name='accounts')
    op.drop_index('ix_accounts_email', table_name='accounts')
    op.drop_table('accounts')
