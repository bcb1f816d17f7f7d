"""
Callback Reconciler
---
Maps a gateway redirect or webhook onto exactly one ledger transaction and
applies it at most once.

Flow:
1. Decode every parameter defensively (untrusted input)
2. Resolve: path reference → merchantOrderId → orderId
3. Ownership check against the caller, when one is known
4. Signature check, when the callback is signed
5. Terminal transactions are never updated again; successful ones are still
   handed to the activator, which is idempotent
6. Pending transactions get the derived status; success triggers activation
7. Purchase tracking runs in the background after a fresh activation

Duplicate deliveries race on the transaction's version column; the loser rolls
back, re-resolves and lands in step 5.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union
from urllib.parse import unquote_plus

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.db.concurrency import is_write_conflict
from src.db.transaction_repository import TransactionRepository
from src.models.payment import GatewayFields, PaymentMode, PaymentStatus, Transaction, UserSubscription
from src.services.activation import SubscriptionActivator
from src.services.kashier import credentials_for_mode, verify_callback_signature
from src.services.payment_errors import InvalidSignature, TransactionNotFound, Unauthorized
from src.services.purchase_tracking import PurchaseTracker, purchase_tracker

logger = logging.getLogger(__name__)

CallbackParams = Union[Mapping[str, str], Iterable[tuple[str, str]]]


def decode_param(value: Optional[str]) -> Optional[str]:
    """URL-decode a gateway value; on malformed input keep the raw text."""
    if value is None:
        return None
    text = str(value)
    try:
        return unquote_plus(text, errors="strict")
    except UnicodeDecodeError:
        return text


def decode_params(params: CallbackParams) -> tuple[list[tuple[str, str]], dict[str, str]]:
    """Return (raw items in received order, decoded first-wins dict)."""
    items = list(params.items()) if isinstance(params, Mapping) else list(params)
    decoded: dict[str, str] = {}
    for key, value in items:
        if key not in decoded:
            decoded[key] = decode_param(value)
    return items, decoded


def derive_status(
    raw_status: Optional[str],
    approved_path: bool,
    success_statuses: Iterable[str],
) -> PaymentStatus:
    """Allow-list match → success; missing status on the approved route → success; else failed."""
    if raw_status is None or not raw_status.strip():
        return PaymentStatus.SUCCESS if approved_path else PaymentStatus.FAILED
    allowed = {s.strip().upper() for s in success_statuses}
    return PaymentStatus.SUCCESS if raw_status.strip().upper() in allowed else PaymentStatus.FAILED


def gateway_fields_from(decoded: Mapping[str, Optional[str]], trx_reference_number: str) -> GatewayFields:
    mode = (decoded.get("mode") or "").lower()
    return GatewayFields(
        trx_reference_number=trx_reference_number or None,
        merchant_order_id=decoded.get("merchantOrderId") or None,
        order_reference=decoded.get("orderReference") or None,
        gateway_transaction_id=decoded.get("transactionId") or None,
        masked_card=decoded.get("maskedCard") or None,
        card_brand=decoded.get("cardBrand") or None,
        card_data_token=decoded.get("cardDataToken") or None,
        signature=decoded.get("signature") or None,
        mode=mode if mode in ("test", "live") else None,
    )


@dataclass
class ReconcileResult:
    transaction_id: str
    payment_status: PaymentStatus
    activated: bool
    already_processed: bool
    subscription: Optional[UserSubscription] = None


class CallbackReconciler:
    """One reconciliation path for every entry point (redirect page, webhook)."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        success_statuses: Optional[Iterable[str]] = None,
        verify_signatures: Optional[bool] = None,
        require_webhook_signature: Optional[bool] = None,
        tracker: Optional[PurchaseTracker] = None,
        max_retries: Optional[int] = None,
    ):
        self.session = session
        self.ledger = TransactionRepository(session)
        self.activator = SubscriptionActivator(session, max_retries=max_retries)
        self.success_statuses = list(success_statuses or settings.KASHIER_SUCCESS_STATUSES)
        self.verify_signatures = (
            settings.KASHIER_VERIFY_SIGNATURES if verify_signatures is None else verify_signatures
        )
        self.require_webhook_signature = (
            settings.KASHIER_REQUIRE_WEBHOOK_SIGNATURE
            if require_webhook_signature is None else require_webhook_signature
        )
        self.tracker = tracker or purchase_tracker
        self.max_retries = max(1, max_retries or settings.RECONCILE_MAX_RETRIES)

    async def resolve(self, trx_reference_number: str, decoded: Mapping[str, Optional[str]]) -> Transaction:
        """First hit wins: path reference, then merchantOrderId, then orderId."""
        txn = await self.ledger.get_transaction_by_reference(trx_reference_number)
        if txn is None and decoded.get("merchantOrderId"):
            logger.info(f"No transaction for reference {trx_reference_number!r} — trying merchantOrderId")
            txn = await self.ledger.get_transaction_by_order_id(decoded["merchantOrderId"])
        if txn is None and decoded.get("orderId"):
            logger.info(f"Still unresolved — trying orderId {decoded['orderId']!r}")
            txn = await self.ledger.get_transaction_by_order_id(decoded["orderId"])
        if txn is None:
            logger.error(
                f"Callback matched no transaction: reference={trx_reference_number!r} "
                f"merchantOrderId={decoded.get('merchantOrderId')!r} orderId={decoded.get('orderId')!r}"
            )
            raise TransactionNotFound(
                "Transaction not found. Contact support with your payment reference.",
                trx_reference_number or None,
            )
        return txn

    def _check_signature(
        self, txn: Transaction, items: list[tuple[str, str]], decoded: Mapping, approved_path: bool,
    ) -> None:
        """Verify the gateway signature when one is present.

        Unsigned callbacks are trusted unless KASHIER_REQUIRE_WEBHOOK_SIGNATURE is
        on, and then only the approved redirect may arrive unsigned. Because a
        missing status on that redirect counts as success, whoever knows a
        reference can mark its transaction paid; the ownership check is the only
        guard there.
        """
        signature = decoded.get("signature")
        required = self.require_webhook_signature and not approved_path
        if not signature:
            if required:
                logger.warning(f"Unsigned webhook for transaction {txn.transaction_id} rejected")
                raise InvalidSignature("Callback signature required", txn.transaction_id)
            return
        if not (self.verify_signatures or required):
            return
        mode = decoded.get("mode") if decoded.get("mode") in ("test", "live") else None
        mode = mode or (txn.mode.value if txn.mode else PaymentMode.LIVE.value)
        creds = credentials_for_mode(mode)
        if not verify_callback_signature(items, signature, creds.secret_key):
            logger.warning(f"Invalid gateway signature for transaction {txn.transaction_id}")
            raise InvalidSignature("Invalid callback signature", txn.transaction_id)

    async def reconcile(
        self,
        trx_reference_number: str,
        params: CallbackParams,
        *,
        caller_user_id: Optional[str] = None,
        approved_path: bool = False,
    ) -> ReconcileResult:
        items, decoded = decode_params(params)
        reference = decode_param(trx_reference_number) or ""
        raw_status = decoded.get("paymentStatus") or decoded.get("status")
        derived = derive_status(raw_status, approved_path, self.success_statuses)

        attempt = 0
        while True:
            attempt += 1
            txn = await self.resolve(reference, decoded)

            if caller_user_id and txn.user_id != caller_user_id:
                logger.warning(
                    f"SECURITY: caller {caller_user_id} attempted to reconcile "
                    f"transaction {txn.transaction_id} owned by {txn.user_id}"
                )
                raise Unauthorized("Unauthorized access to transaction", txn.transaction_id)

            self._check_signature(txn, items, decoded, approved_path)

            if txn.payment_status.is_terminal:
                logger.info(
                    f"Transaction {txn.transaction_id} already {txn.payment_status.value} — not updating ledger"
                )
                already_processed = True
                status = txn.payment_status
                break

            try:
                txn = await self.ledger.update_transaction_status(
                    txn.transaction_id, derived, gateway_fields_from(decoded, reference),
                )
                await self.session.commit()
            except SQLAlchemyError as exc:
                await self.session.rollback()
                if is_write_conflict(exc) and attempt < self.max_retries:
                    logger.info(
                        f"Concurrent update on {txn.transaction_id} "
                        f"(attempt {attempt}/{self.max_retries}) — re-resolving"
                    )
                    await asyncio.sleep(0.05 * attempt)
                    continue
                raise
            already_processed = False
            status = derived
            break

        if status is not PaymentStatus.SUCCESS:
            logger.info(f"Transaction {txn.transaction_id} failed (raw status {raw_status!r}) — no activation")
            return ReconcileResult(txn.transaction_id, status, activated=False, already_processed=already_processed)

        result = await self.activator.activate(txn.transaction_id)
        if result.created:
            self._track(txn)
        return ReconcileResult(
            txn.transaction_id,
            status,
            activated=True,
            already_processed=already_processed,
            subscription=result.subscription,
        )

    def _track(self, txn: Transaction) -> None:
        try:
            self.tracker.schedule(txn)
        except Exception:
            logger.exception(f"Could not schedule purchase tracking for {txn.transaction_id}")
