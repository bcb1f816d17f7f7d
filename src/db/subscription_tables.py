"""Payment event log — immutable audit rows written alongside each state change."""
from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Float, Index, JSON, String

from src.db.tables import Base, utcnow


class PaymentEventRow(Base):
    """Immutable log of payment events (status changes, activations)."""
    __tablename__ = "payment_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(128), nullable=True, index=True)
    transaction_id = Column(String(64), nullable=True, index=True)

    # Event type: transaction.status_changed | subscription.activated
    event_type = Column(String(100), nullable=False, index=True)

    # Source: kashier
    source = Column(String(20), nullable=False)

    # Raw event payload (for debugging / reconciliation)
    payload = Column(JSON, nullable=True)

    amount = Column(Float, nullable=True)
    currency = Column(String(3), default="EGP")

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("ix_payment_events_source_type", "source", "event_type"),
    )
