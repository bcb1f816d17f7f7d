"""User account table — holds the embedded subscription and its audit trail."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, JSON, String

from src.db.tables import Base, utcnow


def free_subscription() -> dict:
    """The entitlement of a user who never purchased: free plans never expire."""
    return {"plan": "free", "status": "active"}


class UserRow(Base):
    """Account aggregate. Identity comes from the external provider (its uid is our id)."""
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    email = Column(String(320), nullable=True, index=True)
    display_name = Column(String(200), nullable=True)
    phone = Column(String(40), nullable=True)

    # Embedded subscription object, overwritten on each activation
    subscription = Column(JSON, nullable=False, default=free_subscription)

    # Append-only: list[{transaction_id, plan, activated_at, valid_until, amount, currency, trx_reference_number}]
    subscription_history = Column(JSON, nullable=False, default=list)

    last_transaction_id = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
