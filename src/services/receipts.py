"""
Receipts
---
Bilingual (en/ar) receipt for a completed purchase. Plan fields come from the
transaction snapshot; validity and credits come from the user's current
subscription.
"""
from __future__ import annotations

from typing import Optional

from src.models.payment import Transaction, UserSubscription
from src.services.plans import normalize_language

_LABELS = {
    "en": {
        "title": "Payment Receipt",
        "transaction_id": "Transaction ID",
        "reference": "Reference Number",
        "plan": "Plan",
        "amount": "Amount",
        "status": "Status",
        "card": "Card",
        "date": "Payment Date",
        "valid_until": "Valid Until",
        "credits": "Remaining Credits",
        "customer": "Customer",
    },
    "ar": {
        "title": "إيصال الدفع",
        "transaction_id": "رقم المعاملة",
        "reference": "الرقم المرجعي",
        "plan": "الباقة",
        "amount": "المبلغ",
        "status": "الحالة",
        "card": "البطاقة",
        "date": "تاريخ الدفع",
        "valid_until": "صالح حتى",
        "credits": "الرصيد المتبقي",
        "customer": "العميل",
    },
}

_STATUS_TEXT = {
    "en": {"pending": "Pending", "success": "Paid", "failed": "Failed"},
    "ar": {"pending": "قيد الانتظار", "success": "مدفوع", "failed": "فشل"},
}


def build_receipt(
    txn: Transaction,
    subscription: Optional[UserSubscription],
    language: str = "en",
) -> dict:
    lang = normalize_language(language)
    paid_at = txn.completed_at or txn.updated_at
    receipt = {
        "language": lang,
        "direction": "rtl" if lang == "ar" else "ltr",
        "labels": _LABELS[lang],
        "transaction_id": txn.transaction_id,
        "trx_reference_number": txn.trx_reference_number,
        "plan_id": txn.plan_id.value,
        "plan_name": txn.plan_name,
        "plan_description": txn.plan_description,
        "amount": txn.amount,
        "currency": txn.currency,
        "payment_status": txn.payment_status.value,
        "status_text": _STATUS_TEXT[lang][txn.payment_status.value],
        "masked_card": txn.masked_card,
        "card_brand": txn.card_brand,
        "customer": {"name": txn.user_name, "email": txn.user_email},
        "paid_at": paid_at.isoformat() if paid_at else None,
        "valid_until": None,
        "credits_remaining": None,
    }
    # Validity only describes this purchase if it is the plan currently held
    if subscription is not None and subscription.plan.value == txn.plan_id.value:
        if subscription.expiration_date:
            receipt["valid_until"] = subscription.expiration_date.isoformat()
        receipt["credits_remaining"] = subscription.credits_remaining
    return receipt
