"""
Checkout
---
Opens a pending ledger entry and hands the client a signed Kashier hosted
payment page URL.

The initial trx_reference_number is embedded in the merchantRedirect and
serverWebhook paths, so every callback for the order carries a reference the
reconciler can resolve directly.
"""
from __future__ import annotations

import logging
import secrets
import time
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.transaction_repository import TransactionRepository
from src.models.payment import PaymentMode, PlanId
from src.services import kashier
from src.services.plans import normalize_language, plan_config

logger = logging.getLogger(__name__)


class CheckoutSession(BaseModel):
    transaction_id: str
    order_id: str
    trx_reference_number: str
    amount: str
    currency: str
    mode: PaymentMode
    hash: str
    hash_path: str
    redirect_url: str


def new_order_id(plan_id: PlanId) -> str:
    return f"order_{plan_id.value}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def new_reference() -> str:
    return f"TRX-{secrets.token_hex(8).upper()}"


def approved_url(trx_reference_number: str) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}/payment-approved/{trx_reference_number}"


def webhook_url(trx_reference_number: str) -> Optional[str]:
    if not settings.API_BASE_URL:
        return None
    return f"{settings.API_BASE_URL.rstrip('/')}/api/v1/payments/webhook/{trx_reference_number}"


async def start_checkout(
    session: AsyncSession,
    *,
    user_id: str,
    user_email: str,
    user_name: str,
    plan_id: str,
    language: str = "en",
    user_phone: Optional[str] = None,
    mode: Optional[PaymentMode] = None,
) -> CheckoutSession:
    """Raises UnknownPlan before anything is written, GatewayNotConfigured without credentials."""
    plan = plan_config(plan_id, language)
    mode = mode or kashier.mode_for_user(user_id)
    creds = kashier.credentials_for_mode(mode)
    lang = normalize_language(language)

    order_id = new_order_id(plan.plan_id)
    reference = new_reference()
    transaction_id = await TransactionRepository(session).create_transaction(
        user_id=user_id,
        user_email=user_email,
        user_name=user_name,
        user_phone=user_phone,
        plan_id=plan.plan_id.value,
        order_id=order_id,
        mode=creds.mode,
        language=lang,
        initial_reference=reference,
    )

    amount = kashier.format_amount(plan.price)
    digest = kashier.order_hash(creds.merchant_id, order_id, amount, plan.currency, creds.api_key)
    redirect_url = kashier.build_checkout_url(
        creds,
        order_id=order_id,
        amount=amount,
        currency=plan.currency,
        order_hash_value=digest,
        merchant_redirect=approved_url(reference),
        server_webhook=webhook_url(reference),
        language=lang,
        customer_email=user_email,
    )
    await session.commit()

    logger.info(
        f"Checkout started: txn={transaction_id} user={user_id} plan={plan.plan_id.value} "
        f"mode={creds.mode.value} ref={reference}"
    )
    return CheckoutSession(
        transaction_id=transaction_id,
        order_id=order_id,
        trx_reference_number=reference,
        amount=amount,
        currency=plan.currency,
        mode=creds.mode,
        hash=digest,
        hash_path=kashier.hash_path(creds.merchant_id, order_id, amount, plan.currency),
        redirect_url=redirect_url,
    )
