"""donations schema

Revision ID: 3f2a9c1d7e41
Revises:
Create Date: 2026-10-18 09:12:40.118204
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f2a9c1d7e41"
down_revision = None
branch_labels = None
depends_on = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _jsonb():
    # JSON on SQLite, JSONB on Postgres
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    # --- donation_settings ---
    op.create_table(
        "donation_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("stripe_mode", sa.String(length=8), nullable=True),
        sa.Column("stripe_secret_key", sa.String(length=255), nullable=True),
        sa.Column("stripe_webhook_secret", sa.String(length=255), nullable=True),
        *_timestamps(),
    )

    # --- catalog_items ---
    op.create_table(
        "catalog_items",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("stripe_product_id", sa.String(length=120), nullable=True),
        sa.Column("stripe_price_id", sa.String(length=120), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    with op.batch_alter_table("catalog_items") as batch_op:
        batch_op.create_index(batch_op.f("ix_catalog_items_slug"), ["slug"], unique=True)
        batch_op.create_index(batch_op.f("ix_catalog_items_is_active"), ["is_active"], unique=False)
        batch_op.create_index(batch_op.f("ix_catalog_items_created_at"), ["created_at"], unique=False)

    # --- donors ---
    op.create_table(
        "donors",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("address", _jsonb(), nullable=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        *_timestamps(),
    )
    with op.batch_alter_table("donors") as batch_op:
        batch_op.create_index(batch_op.f("ix_donors_email"), ["email"], unique=True)
        batch_op.create_index(batch_op.f("ix_donors_stripe_customer_id"), ["stripe_customer_id"], unique=True)
        batch_op.create_index(batch_op.f("ix_donors_created_at"), ["created_at"], unique=False)

    # --- donor_manage_tokens ---
    op.create_table(
        "donor_manage_tokens",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("donor_id", sa.String(length=36), sa.ForeignKey("donors.id"), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    with op.batch_alter_table("donor_manage_tokens") as batch_op:
        batch_op.create_index(batch_op.f("ix_donor_manage_tokens_donor_id"), ["donor_id"], unique=False)

    # --- donation_intents ---
    op.create_table(
        "donation_intents",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("custom_amount_cents", sa.Integer(), nullable=False),
        sa.Column("stripe_checkout_session_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("donor_id", sa.String(length=36), sa.ForeignKey("donors.id"), nullable=True),
        sa.Column("metadata", _jsonb(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    with op.batch_alter_table("donation_intents") as batch_op:
        batch_op.create_index(batch_op.f("ix_donation_intents_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_donation_intents_donor_id"), ["donor_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donation_intents_created_at"), ["created_at"], unique=False)

    # --- donation_intent_items ---
    op.create_table(
        "donation_intent_items",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "donation_intent_id",
            sa.String(length=36),
            sa.ForeignKey("donation_intents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("catalog_item_id", sa.String(length=36), sa.ForeignKey("catalog_items.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_amount_cents", sa.Integer(), nullable=False),
        sa.Column("line_amount_cents", sa.Integer(), nullable=False),
    )
    with op.batch_alter_table("donation_intent_items") as batch_op:
        batch_op.create_index(
            batch_op.f("ix_donation_intent_items_donation_intent_id"), ["donation_intent_id"], unique=False
        )

    # --- donation_subscriptions ---
    op.create_table(
        "donation_subscriptions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=False),
        sa.Column("donor_id", sa.String(length=36), sa.ForeignKey("donors.id"), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("stripe_price_id", sa.String(length=255), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("canceled_at", sa.DateTime(), nullable=True),
        sa.Column("last_invoice_status", sa.String(length=32), nullable=True),
        sa.Column("last_payment_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    with op.batch_alter_table("donation_subscriptions") as batch_op:
        batch_op.create_index(
            batch_op.f("ix_donation_subscriptions_stripe_subscription_id"), ["stripe_subscription_id"], unique=True
        )
        batch_op.create_index(batch_op.f("ix_donation_subscriptions_donor_id"), ["donor_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donation_subscriptions_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_donation_subscriptions_created_at"), ["created_at"], unique=False)

    # --- donation_payments ---
    op.create_table(
        "donation_payments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("donor_id", sa.String(length=36), sa.ForeignKey("donors.id"), nullable=True),
        sa.Column("donation_intent_id", sa.String(length=36), sa.ForeignKey("donation_intents.id"), nullable=True),
        sa.Column(
            "donation_subscription_id",
            sa.String(length=36),
            sa.ForeignKey("donation_subscriptions.id"),
            nullable=True,
        ),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("stripe_invoice_id", sa.String(length=255), nullable=True, unique=True),
        sa.Column("stripe_charge_id", sa.String(length=255), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("raw", _jsonb(), nullable=True),
        *_timestamps(),
    )
    with op.batch_alter_table("donation_payments") as batch_op:
        batch_op.create_index(batch_op.f("ix_donation_payments_donor_id"), ["donor_id"], unique=False)
        batch_op.create_index(
            batch_op.f("ix_donation_payments_donation_intent_id"), ["donation_intent_id"], unique=False
        )
        batch_op.create_index(
            batch_op.f("ix_donation_payments_donation_subscription_id"), ["donation_subscription_id"], unique=False
        )
        batch_op.create_index(batch_op.f("ix_donation_payments_stripe_charge_id"), ["stripe_charge_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donation_payments_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_donation_payments_created_at"), ["created_at"], unique=False)

    # --- stripe_webhook_events ---
    op.create_table(
        "stripe_webhook_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("stripe_event_id", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=120), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    with op.batch_alter_table("stripe_webhook_events") as batch_op:
        batch_op.create_index(
            batch_op.f("ix_stripe_webhook_events_stripe_event_id"), ["stripe_event_id"], unique=True
        )
        batch_op.create_index(batch_op.f("ix_stripe_webhook_events_type"), ["type"], unique=False)
        batch_op.create_index("ix_stripe_webhook_events_status_received", ["status", "received_at"], unique=False)

    # --- stripe_products / stripe_amount_prices ---
    op.create_table(
        "stripe_products",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("stripe_mode", sa.String(length=8), nullable=False),
        sa.Column("key", sa.String(length=120), nullable=False),
        sa.Column("stripe_product_id", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("stripe_mode", "key", name="uq_stripe_products_mode_key"),
    )
    op.create_table(
        "stripe_amount_prices",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("stripe_mode", sa.String(length=8), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("interval", sa.String(length=16), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("stripe_product_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_price_id", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "stripe_mode", "currency", "interval", "amount_cents", name="uq_stripe_amount_prices_mode_amount"
        ),
    )

    # --- rate_limit_buckets ---
    op.create_table(
        "rate_limit_buckets",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("event", sa.String(length=120), nullable=False),
        sa.Column("identifier", sa.String(length=64), nullable=False),
        sa.Column("window_started_at", sa.DateTime(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("event", "identifier", name="uq_rate_limit_buckets_event_identifier"),
    )


def downgrade():
    for table in (
        "rate_limit_buckets",
        "stripe_amount_prices",
        "stripe_products",
        "stripe_webhook_events",
        "donation_payments",
        "donation_subscriptions",
        "donation_intent_items",
        "donation_intents",
        "donor_manage_tokens",
        "donors",
        "catalog_items",
        "donation_settings",
    ):
        op.drop_table(table)
