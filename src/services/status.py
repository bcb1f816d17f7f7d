"""Read-only payment status for the client polling after checkout."""
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.transaction_repository import TransactionRepository
from src.models.payment import TransactionStatus


async def get_transaction_status(session: AsyncSession, transaction_id: str) -> TransactionStatus:
    """Raises TransactionNotFound when the id is unknown."""
    txn = await TransactionRepository(session).get_transaction(transaction_id)
    return TransactionStatus(
        transaction_id=txn.transaction_id,
        payment_status=txn.payment_status,
        plan_id=txn.plan_id,
        amount=txn.amount,
        currency=txn.currency,
    )
