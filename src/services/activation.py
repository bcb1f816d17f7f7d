"""
Subscription Activator
---
Turns a successful transaction into the user's entitlement.

Guarantees:
- The user's subscription, its history entry, last_transaction_id and the
  audit event commit together or not at all
- Expiration comes from the transaction's own plan snapshot, never the live catalog
- One history entry per transaction, however many times activation runs
- An older or shorter purchase activated late (recovery, re-trigger) is added
  to the history but never replaces a newer entitlement
- Concurrent activations race on the user row's version column; the loser
  re-reads and finds the entry already there
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.concurrency import is_write_conflict
from src.db.subscription_tables import PaymentEventRow
from src.db.tables import utcnow
from src.db.transaction_repository import TransactionRepository
from src.db.transaction_tables import TransactionRow
from src.db.user_tables import UserRow, free_subscription
from src.models.payment import (
    PaymentStatus,
    PlanId,
    SubscriptionHistoryEntry,
    SubscriptionPlan,
    SubscriptionStatus,
    Transaction,
    UserSubscription,
)
from src.services.payment_errors import (
    ActivationFailed,
    TransactionNotFound,
    TransactionNotSuccessful,
    UserNotFound,
)
from src.services.plans import DEFAULT_DURATIONS, plan_config

logger = logging.getLogger(__name__)

# Months and years are approximated
_UNIT_DAYS = {
    "day": 1, "days": 1,
    "month": 30, "months": 30,
    "year": 365, "years": 365,
}


def duration_delta(duration: str | int | None, unit: str | None) -> Optional[timedelta]:
    """Interpret a stored duration; None when value or unit is not understood."""
    if duration is None or unit is None:
        return None
    days_per_unit = _UNIT_DAYS.get(str(unit).strip().lower())
    if days_per_unit is None:
        return None
    try:
        value = int(str(duration).strip())
    except ValueError:
        return None
    if value <= 0:
        return None
    return timedelta(days=value * days_per_unit)


def plan_duration(plan_id: str, duration: str | None, unit: str | None) -> timedelta:
    delta = duration_delta(duration, unit)
    if delta is not None:
        return delta
    value, default_unit = DEFAULT_DURATIONS[PlanId(plan_id)]
    logger.warning(
        f"Unrecognized duration {duration!r} {unit!r} for plan {plan_id} — using default {value} {default_unit}"
    )
    return duration_delta(value, default_unit)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def load_subscription(user: UserRow) -> UserSubscription:
    return UserSubscription(**(user.subscription or free_subscription()))


@dataclass
class ActivationResult:
    transaction_id: str
    user_id: str
    subscription: UserSubscription
    created: bool  # False when the history already held this transaction


class SubscriptionActivator:
    """Grants entitlements from successful transactions. Safe to call repeatedly."""

    def __init__(self, session: AsyncSession, max_retries: Optional[int] = None):
        self.session = session
        self.max_retries = max(1, max_retries or settings.ACTIVATION_MAX_RETRIES)

    async def activate(self, transaction_id: str, now: Optional[datetime] = None) -> ActivationResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._activate_once(transaction_id, now)
            except SQLAlchemyError as exc:
                await self.session.rollback()
                if is_write_conflict(exc) and attempt < self.max_retries:
                    logger.info(
                        f"Activation conflict for {transaction_id} "
                        f"(attempt {attempt}/{self.max_retries}) — retrying from fresh state"
                    )
                    await asyncio.sleep(0.05 * attempt)
                    continue
                logger.error(
                    f"Activation failed for {transaction_id}: payment recorded, entitlement not granted",
                    exc_info=True,
                )
                raise ActivationFailed(
                    "Payment succeeded but the subscription could not be activated yet. "
                    "Retry activation or contact support with this transaction id.",
                    transaction_id,
                ) from exc

    async def _activate_once(self, transaction_id: str, now: Optional[datetime]) -> ActivationResult:
        txn_row = (await self.session.execute(
            select(TransactionRow).where(TransactionRow.transaction_id == transaction_id)
        )).scalar_one_or_none()
        if txn_row is None:
            raise TransactionNotFound(f"Transaction not found: {transaction_id}", transaction_id)
        if txn_row.payment_status != PaymentStatus.SUCCESS.value:
            logger.error(
                f"Activation requested for {transaction_id} with status "
                f"{txn_row.payment_status!r} — caller contract violated"
            )
            raise TransactionNotSuccessful(
                f"Transaction {transaction_id} has status {txn_row.payment_status!r}",
                transaction_id,
            )

        user = (await self.session.execute(
            select(UserRow).where(UserRow.id == txn_row.user_id)
        )).scalar_one_or_none()
        if user is None:
            logger.error(f"Activation for {transaction_id}: user {txn_row.user_id} has no account")
            raise UserNotFound(f"User account not found: {txn_row.user_id}", transaction_id)

        history = list(user.subscription_history or [])
        if any(entry.get("transaction_id") == transaction_id for entry in history):
            logger.info(f"Transaction {transaction_id} already activated for user {user.id}")
            return ActivationResult(transaction_id, user.id, load_subscription(user), created=False)

        now = now or utcnow()
        expires = now + plan_duration(txn_row.plan_id, txn_row.plan_duration, txn_row.plan_duration_unit)
        plan = SubscriptionPlan(txn_row.plan_id)

        entry = SubscriptionHistoryEntry(
            transaction_id=transaction_id,
            plan=plan,
            activated_at=now,
            valid_until=expires,
            amount=txn_row.amount,
            currency=txn_row.currency,
            trx_reference_number=txn_row.trx_reference_number,
        )

        current = load_subscription(user)
        applied = not await self._is_superseded(user, current, txn_row, expires)
        if applied:
            subscription = UserSubscription(
                plan=plan,
                status=SubscriptionStatus.ACTIVE,
                start_date=current.start_date or now,
                expiration_date=expires,
                last_payment_date=now,
            )
            if plan is SubscriptionPlan.FLEX_PACK:
                subscription.credits_remaining = plan_config(txn_row.plan_id).credits
            elif plan is SubscriptionPlan.ANNUAL_PASS:
                subscription.renewal_date = expires
                subscription.next_billing_date = expires
            # Reassign (not mutate) so the JSON columns are flagged dirty
            user.subscription = subscription.model_dump(mode="json", exclude_none=True)
            user.last_transaction_id = transaction_id
        else:
            subscription = current

        user.subscription_history = [*history, entry.model_dump(mode="json")]
        self.session.add(PaymentEventRow(
            user_id=user.id,
            transaction_id=transaction_id,
            event_type="subscription.activated",
            source="kashier",
            payload={"plan": plan.value, "valid_until": expires.isoformat(), "applied": applied},
            amount=txn_row.amount,
            currency=txn_row.currency,
        ))
        await self.session.commit()

        if applied:
            logger.info(
                f"Subscription activated: user={user.id} plan={plan.value} "
                f"until={expires.isoformat()} txn={transaction_id}"
            )
        else:
            logger.warning(
                f"Transaction {transaction_id} recorded in history for user {user.id} — "
                f"current {current.plan.value} entitlement is newer and was kept"
            )
        return ActivationResult(transaction_id, user.id, subscription, created=True)

    async def _is_superseded(
        self, user: UserRow, current: UserSubscription, txn_row: TransactionRow, expires: datetime,
    ) -> bool:
        """True when the user already holds a newer purchase or a paid entitlement that outlasts this one."""
        if current.plan is not SubscriptionPlan.FREE and current.expiration_date is not None:
            if _as_utc(current.expiration_date) > _as_utc(expires):
                return True

        if not user.last_transaction_id or user.last_transaction_id == txn_row.transaction_id:
            return False
        last_created = (await self.session.execute(
            select(TransactionRow.created_at)
            .where(TransactionRow.transaction_id == user.last_transaction_id)
        )).scalar_one_or_none()
        return last_created is not None and _as_utc(last_created) > _as_utc(txn_row.created_at)

    async def find_unactivated_transaction(self, user_id: str) -> Optional[Transaction]:
        """The user's latest successful payment if its activation never committed."""
        last = await TransactionRepository(self.session).get_last_successful_transaction(user_id)
        if last is None:
            return None
        user = (await self.session.execute(
            select(UserRow).where(UserRow.id == user_id)
        )).scalar_one_or_none()
        if user is None:
            return last
        activated = {e.get("transaction_id") for e in (user.subscription_history or [])}
        return None if last.transaction_id in activated else last
