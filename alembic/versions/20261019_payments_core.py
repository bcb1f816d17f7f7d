"""Create transactions, users and payment_events tables.

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "5c1e9a7d2b40"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("transaction_id", sa.String(64), primary_key=True),
        sa.Column("plan_id", sa.String(20), nullable=False),
        sa.Column("plan_name", sa.String(200), nullable=False),
        sa.Column("plan_price", sa.Float, nullable=False),
        sa.Column("plan_currency", sa.String(3), nullable=False),
        sa.Column("plan_duration", sa.String(20), nullable=False),
        sa.Column("plan_duration_unit", sa.String(20), nullable=False),
        sa.Column("plan_description", sa.Text, nullable=True),
        sa.Column("language", sa.String(5), nullable=False, server_default="en"),
        sa.Column("user_id", sa.String(128), nullable=False, index=True),
        sa.Column("user_email", sa.String(320), nullable=False),
        sa.Column("user_name", sa.String(200), nullable=False),
        sa.Column("user_phone", sa.String(40), nullable=True),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_status", sa.String(10), nullable=False, server_default="pending", index=True),
        sa.Column("trx_reference_number", sa.String(128), nullable=True, index=True),
        sa.Column("order_id", sa.String(200), nullable=True, index=True),
        sa.Column("merchant_order_id", sa.String(200), nullable=True, index=True),
        sa.Column("order_reference", sa.String(200), nullable=True),
        sa.Column("gateway_transaction_id", sa.String(200), nullable=True),
        sa.Column("masked_card", sa.String(40), nullable=True),
        sa.Column("card_brand", sa.String(40), nullable=True),
        sa.Column("card_data_token", sa.String(255), nullable=True),
        sa.Column("signature", sa.String(255), nullable=True),
        sa.Column("mode", sa.String(10), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
    )
    op.create_index("ix_transactions_user_created", "transactions", ["user_id", "created_at"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True, index=True),
        sa.Column("display_name", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("subscription", sa.JSON, nullable=False),
        sa.Column("subscription_history", sa.JSON, nullable=False),
        sa.Column("last_transaction_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer, nullable=False),
    )

    op.create_table(
        "payment_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=True, index=True),
        sa.Column("transaction_id", sa.String(64), nullable=True, index=True),
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("amount", sa.Float, nullable=True),
        sa.Column("currency", sa.String(3), server_default="EGP"),
        sa.Column("created_at", sa.DateTime(timezone=True), index=True),
    )
    op.create_index("ix_payment_events_source_type", "payment_events", ["source", "event_type"])


def downgrade() -> None:
    op.drop_index("ix_payment_events_source_type", table_name="payment_events")
    op.drop_table("payment_events")
    op.drop_table("users")
    op.drop_index("ix_transactions_user_created", table_name="transactions")
    op.drop_table("transactions")
