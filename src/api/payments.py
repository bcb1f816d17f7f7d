"""Payment API routes — checkout, gateway callbacks, status, activation, receipts.

Flow:
  Checkout → Kashier hosted page → approved redirect / server webhook
  → reconcile → activate subscription → client polls status
"""
from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth import get_caller_id, require_caller
from src.db.engine import get_session
from src.db.tables import utcnow
from src.db.transaction_repository import TransactionRepository
from src.db.user_tables import UserRow
from src.services.activation import SubscriptionActivator, load_subscription
from src.services.checkout import start_checkout
from src.services.payment_errors import Unauthorized, UserNotFound
from src.services.plans import list_plans, normalize_language
from src.services.receipts import build_receipt
from src.services.reconciler import CallbackReconciler, ReconcileResult
from src.services.status import get_transaction_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])
plans_router = APIRouter(prefix="/api/v1", tags=["plans"])


# ── Schemas ──────────────────────────────────────────────────────────────────

class CheckoutRequest(BaseModel):
    plan_id: str = Field(..., min_length=1, max_length=40)
    language: str = Field("en", max_length=5)
    user_name: Optional[str] = Field(None, max_length=200)
    user_phone: Optional[str] = Field(None, max_length=40)


class ActivateRequest(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=64)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _stringify(value) -> str:
    """Render a JSON value the way the gateway does when it signs the payload."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


async def _callback_params(request: Request) -> list[tuple[str, str]]:
    """Query string plus, for POSTs, a JSON or form body (a nested `data` object is unwrapped)."""
    items = list(request.query_params.multi_items())
    if request.method != "POST":
        return items

    content_type = request.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(400, "Malformed JSON body")
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict):
            raise HTTPException(400, "Callback body must be a JSON object")
        items.extend((str(k), _stringify(v)) for k, v in body.items())
    elif "application/x-www-form-urlencoded" in content_type:
        raw = (await request.body()).decode("utf-8", errors="replace")
        items.extend(parse_qsl(raw, keep_blank_values=True))
    return items


def _result_body(result: ReconcileResult) -> dict:
    return {
        "ok": True,
        "transaction_id": result.transaction_id,
        "payment_status": result.payment_status.value,
        "activated": result.activated,
        "already_processed": result.already_processed,
        "subscription": (
            result.subscription.model_dump(mode="json", exclude_none=True)
            if result.subscription else None
        ),
    }


async def _load_user(session: AsyncSession, user_id: str) -> Optional[UserRow]:
    return (await session.execute(select(UserRow).where(UserRow.id == user_id))).scalar_one_or_none()


# ── Checkout ─────────────────────────────────────────────────────────────────

@router.post("/checkout", status_code=201)
async def checkout(
    req: CheckoutRequest,
    caller_id: str = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
):
    """Open a pending transaction and return the hosted payment page URL."""
    user = await _load_user(session, caller_id)
    if user is None or not user.email:
        raise UserNotFound("Complete your profile before purchasing")
    result = await start_checkout(
        session,
        user_id=caller_id,
        user_email=user.email,
        user_name=req.user_name or user.display_name or user.email,
        user_phone=req.user_phone or user.phone,
        plan_id=req.plan_id,
        language=req.language,
    )
    return result.model_dump(mode="json")


# ── Gateway callbacks ────────────────────────────────────────────────────────

@router.api_route("/approved/{trx_reference_number}", methods=["GET", "POST"])
async def payment_approved(
    trx_reference_number: str,
    request: Request,
    caller_id: Optional[str] = Depends(get_caller_id),
    session: AsyncSession = Depends(get_session),
):
    """Browser redirect after the hosted page. A missing status counts as success here."""
    params = await _callback_params(request)
    result = await CallbackReconciler(session).reconcile(
        trx_reference_number, params, caller_user_id=caller_id, approved_path=True,
    )
    return _result_body(result)


@router.post("/webhook/{trx_reference_number}")
async def payment_webhook(
    trx_reference_number: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """Server-to-server notification; the reference comes from our own webhook URL."""
    params = await _callback_params(request)
    result = await CallbackReconciler(session).reconcile(trx_reference_number, params)
    return _result_body(result)


@router.post("/webhook")
async def payment_webhook_unreferenced(
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """Webhook configured without a path reference — resolved by order id only."""
    params = await _callback_params(request)
    result = await CallbackReconciler(session).reconcile("", params)
    return _result_body(result)


@router.get("/webhook")
async def webhook_probe():
    """Lets the gateway dashboard confirm the endpoint is reachable."""
    return {"message": "Kashier webhook endpoint is active", "timestamp": utcnow().isoformat()}


# ── Status, activation, history ──────────────────────────────────────────────

@router.get("/status")
async def payment_status(
    transaction_id: str = Query(..., alias="transactionId", min_length=1, max_length=64),
    caller_id: Optional[str] = Depends(get_caller_id),
    session: AsyncSession = Depends(get_session),
):
    status = await get_transaction_status(session, transaction_id)
    if caller_id:
        txn = await TransactionRepository(session).get_transaction(transaction_id)
        if txn.user_id != caller_id:
            logger.warning(
                f"SECURITY: caller {caller_id} polled transaction {transaction_id} owned by {txn.user_id}"
            )
            raise Unauthorized("Unauthorized access to transaction", transaction_id)
    return status.model_dump(mode="json")


@router.post("/activate")
async def activate(
    req: ActivateRequest,
    caller_id: str = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
):
    """Re-trigger activation for a successful payment. Idempotent."""
    txn = await TransactionRepository(session).get_transaction(req.transaction_id)
    if txn.user_id != caller_id:
        logger.warning(
            f"SECURITY: caller {caller_id} tried to activate transaction {txn.transaction_id} owned by {txn.user_id}"
        )
        raise Unauthorized("Unauthorized access to transaction", txn.transaction_id)
    result = await SubscriptionActivator(session).activate(txn.transaction_id)
    return {
        "ok": True,
        "transaction_id": result.transaction_id,
        "created": result.created,
        "subscription": result.subscription.model_dump(mode="json", exclude_none=True),
    }


@router.post("/recover")
async def recover(
    caller_id: str = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
):
    """Activate the caller's latest successful payment if it never reached their subscription."""
    activator = SubscriptionActivator(session)
    pending = await activator.find_unactivated_transaction(caller_id)
    if pending is None:
        return {"recovered": False, "transaction_id": None}
    logger.warning(f"Recovering unactivated payment {pending.transaction_id} for user {caller_id}")
    result = await activator.activate(pending.transaction_id)
    return {
        "recovered": result.created,
        "transaction_id": result.transaction_id,
        "subscription": result.subscription.model_dump(mode="json", exclude_none=True),
    }


@router.get("/transactions")
async def my_transactions(
    caller_id: str = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
):
    txns = await TransactionRepository(session).list_user_transactions(caller_id)
    fields = {
        "transaction_id", "plan_id", "plan_name", "amount", "currency", "payment_status",
        "trx_reference_number", "masked_card", "card_brand", "created_at", "completed_at",
    }
    return {"transactions": [t.model_dump(mode="json", include=fields) for t in txns]}


@router.get("/receipt")
async def receipt(
    transaction_id: str = Query(..., alias="transactionId", min_length=1, max_length=64),
    lang: str = Query("en", max_length=5),
    caller_id: str = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
):
    txn = await TransactionRepository(session).get_transaction(transaction_id)
    if txn.user_id != caller_id:
        logger.warning(
            f"SECURITY: caller {caller_id} requested receipt for {transaction_id} owned by {txn.user_id}"
        )
        raise Unauthorized("Unauthorized access to transaction", transaction_id)
    user = await _load_user(session, caller_id)
    subscription = load_subscription(user) if user else None
    return build_receipt(txn, subscription, lang)


# ── Plan catalog ─────────────────────────────────────────────────────────────

@plans_router.get("/plans")
async def plans(lang: str = Query("en", max_length=5)):
    language = normalize_language(lang)
    return {
        "language": language,
        "plans": [
            {
                "plan_id": p.plan_id.value,
                "name": p.name,
                "description": p.description,
                "price": p.price,
                "currency": p.currency,
                "duration": p.duration,
                "duration_unit": p.duration_unit,
                "credits": p.credits,
            }
            for p in list_plans(language)
        ],
    }
