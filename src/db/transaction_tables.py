"""Transaction ledger table — one row per checkout attempt."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text

from src.db.tables import Base, utcnow


class TransactionRow(Base):
    """A payment attempt. Plan snapshot and user fields are written once at checkout."""
    __tablename__ = "transactions"

    transaction_id = Column(String(64), primary_key=True)

    # Plan snapshot (copied from the catalog at creation; never rewritten)
    plan_id = Column(String(20), nullable=False)
    plan_name = Column(String(200), nullable=False)
    plan_price = Column(Float, nullable=False)
    plan_currency = Column(String(3), nullable=False)
    plan_duration = Column(String(20), nullable=False)
    plan_duration_unit = Column(String(20), nullable=False)
    plan_description = Column(Text, nullable=True)
    language = Column(String(5), nullable=False, default="en")

    # Purchaser
    user_id = Column(String(128), nullable=False, index=True)
    user_email = Column(String(320), nullable=False)
    user_name = Column(String(200), nullable=False)
    user_phone = Column(String(40), nullable=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False)

    # pending | success | failed
    payment_status = Column(String(10), nullable=False, default="pending", index=True)

    # Gateway correlation — some set at checkout, the rest only by the callback
    trx_reference_number = Column(String(128), nullable=True, index=True)
    order_id = Column(String(200), nullable=True, index=True)
    merchant_order_id = Column(String(200), nullable=True, index=True)
    order_reference = Column(String(200), nullable=True)
    gateway_transaction_id = Column(String(200), nullable=True)
    masked_card = Column(String(40), nullable=True)
    card_brand = Column(String(40), nullable=True)
    card_data_token = Column(String(255), nullable=True)
    signature = Column(String(255), nullable=True)
    mode = Column(String(10), nullable=True)  # test | live

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency: concurrent callbacks for the same row race here
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )
