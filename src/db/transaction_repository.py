"""Transaction ledger — DB operations + Pydantic conversion.

Writes only add/flush; the calling service owns the commit so a status change
and its audit event land in one database transaction.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.subscription_tables import PaymentEventRow
from src.db.tables import utcnow
from src.db.transaction_tables import TransactionRow
from src.models.payment import GatewayFields, PaymentMode, PaymentStatus, Transaction
from src.services.payment_errors import TransactionNotFound
from src.services.plans import normalize_language, plan_config

logger = logging.getLogger(__name__)


def _row_to_transaction(row: TransactionRow) -> Transaction:
    """Convert a DB row to a Pydantic Transaction."""
    return Transaction(
        transaction_id=row.transaction_id,
        plan_id=row.plan_id,
        plan_name=row.plan_name,
        plan_price=row.plan_price,
        plan_currency=row.plan_currency,
        plan_duration=row.plan_duration,
        plan_duration_unit=row.plan_duration_unit,
        plan_description=row.plan_description,
        language=row.language or "en",
        user_id=row.user_id,
        user_email=row.user_email,
        user_name=row.user_name,
        user_phone=row.user_phone,
        amount=row.amount,
        currency=row.currency,
        payment_status=row.payment_status,
        trx_reference_number=row.trx_reference_number,
        order_id=row.order_id,
        merchant_order_id=row.merchant_order_id,
        order_reference=row.order_reference,
        gateway_transaction_id=row.gateway_transaction_id,
        masked_card=row.masked_card,
        card_brand=row.card_brand,
        card_data_token=row.card_data_token,
        signature=row.signature,
        mode=row.mode,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
    )


def new_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex}"


class TransactionRepository:
    """Async ledger access backed by SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_transaction(
        self,
        *,
        user_id: str,
        user_email: str,
        user_name: str,
        plan_id: str,
        order_id: str,
        mode: PaymentMode | str,
        language: str = "en",
        initial_reference: Optional[str] = None,
        user_phone: Optional[str] = None,
    ) -> str:
        """Record a pending payment attempt with a snapshot of the plan. Raises UnknownPlan."""
        plan = plan_config(plan_id, language)
        now = utcnow()
        row = TransactionRow(
            transaction_id=new_transaction_id(),
            plan_id=plan.plan_id.value,
            plan_name=plan.name,
            plan_price=plan.price,
            plan_currency=plan.currency,
            plan_duration=plan.duration,
            plan_duration_unit=plan.duration_unit,
            plan_description=plan.description,
            language=normalize_language(language),
            user_id=user_id,
            user_email=user_email,
            user_name=user_name,
            user_phone=user_phone,
            amount=plan.price,
            currency=plan.currency,
            payment_status=PaymentStatus.PENDING.value,
            order_id=order_id,
            trx_reference_number=initial_reference,
            mode=PaymentMode(mode).value,
            created_at=now,
            updated_at=now,
        )
        self.session.add(row)
        await self.session.flush()
        logger.info(
            f"Transaction created: id={row.transaction_id} user={user_id} "
            f"plan={plan.plan_id.value} order={order_id}"
        )
        return row.transaction_id

    async def _get_row(self, transaction_id: str) -> Optional[TransactionRow]:
        result = await self.session.execute(
            select(TransactionRow).where(TransactionRow.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_transaction(self, transaction_id: str) -> Transaction:
        row = await self._get_row(transaction_id)
        if row is None:
            raise TransactionNotFound(f"Transaction not found: {transaction_id}", transaction_id)
        return _row_to_transaction(row)

    async def get_transaction_by_reference(self, trx_reference_number: str) -> Optional[Transaction]:
        """References are unique in practice; duplicates are logged, the oldest wins."""
        if not trx_reference_number:
            return None
        result = await self.session.execute(
            select(TransactionRow)
            .where(TransactionRow.trx_reference_number == trx_reference_number)
            .order_by(TransactionRow.created_at.asc(), TransactionRow.transaction_id.asc())
        )
        rows = result.scalars().all()
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                f"Data integrity: {len(rows)} transactions share reference "
                f"{trx_reference_number} — using {rows[0].transaction_id}"
            )
        return _row_to_transaction(rows[0])

    async def get_transaction_by_order_id(self, order_id: str) -> Optional[Transaction]:
        """Match our order id first, then the merchant order id the gateway echoes."""
        if not order_id:
            return None
        for column in (TransactionRow.order_id, TransactionRow.merchant_order_id):
            result = await self.session.execute(
                select(TransactionRow)
                .where(column == order_id)
                .order_by(TransactionRow.created_at.asc(), TransactionRow.transaction_id.asc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                return _row_to_transaction(row)
        return None

    async def list_user_transactions(self, user_id: str) -> list[Transaction]:
        result = await self.session.execute(
            select(TransactionRow)
            .where(TransactionRow.user_id == user_id)
            .order_by(TransactionRow.created_at.desc(), TransactionRow.transaction_id.desc())
        )
        return [_row_to_transaction(r) for r in result.scalars().all()]

    async def get_last_successful_transaction(self, user_id: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(TransactionRow)
            .where(
                TransactionRow.user_id == user_id,
                TransactionRow.payment_status == PaymentStatus.SUCCESS.value,
            )
            .order_by(TransactionRow.created_at.desc(), TransactionRow.transaction_id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _row_to_transaction(row) if row else None

    async def update_transaction_status(
        self,
        transaction_id: str,
        new_status: PaymentStatus | str,
        gateway_fields: Union[GatewayFields, dict, None] = None,
    ) -> Transaction:
        """Overwrite payment_status and merge gateway fields.

        Does not guard against repeated calls; the reconciler decides whether an
        update should happen at all. Order id, the initial reference and the plan
        snapshot are never touched.
        """
        row = await self._get_row(transaction_id)
        if row is None:
            raise TransactionNotFound(f"Transaction not found: {transaction_id}", transaction_id)

        status = PaymentStatus(new_status)
        if isinstance(gateway_fields, dict):
            gateway_fields = GatewayFields(**gateway_fields)
        fields = gateway_fields.model_dump(exclude_none=True) if gateway_fields else {}

        reference = fields.pop("trx_reference_number", None)
        if reference and not row.trx_reference_number:
            row.trx_reference_number = reference
        mode = fields.pop("mode", None)
        if mode is not None:
            row.mode = PaymentMode(mode).value
        for key, value in fields.items():
            setattr(row, key, value)

        previous = row.payment_status
        now = utcnow()
        row.payment_status = status.value
        row.updated_at = now
        if status.is_terminal:
            row.completed_at = now

        self.session.add(PaymentEventRow(
            user_id=row.user_id,
            transaction_id=row.transaction_id,
            event_type="transaction.status_changed",
            source="kashier",
            payload={"from": previous, "to": status.value, "gateway": fields},
            amount=row.amount,
            currency=row.currency,
        ))
        await self.session.flush()
        logger.info(f"Transaction {transaction_id}: {previous} -> {status.value}")
        return _row_to_transaction(row)
