"""Payment and subscription data models."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PlanId(str, Enum):
    ONE_TIME = "one_time"
    FLEX_PACK = "flex_pack"
    ANNUAL_PASS = "annual_pass"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentMode(str, Enum):
    TEST = "test"
    LIVE = "live"


class SubscriptionPlan(str, Enum):
    FREE = "free"
    ONE_TIME = "one_time"
    FLEX_PACK = "flex_pack"
    ANNUAL_PASS = "annual_pass"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Transaction(BaseModel):
    transaction_id: str
    plan_id: PlanId
    plan_name: str
    plan_price: float
    plan_currency: str
    plan_duration: str
    plan_duration_unit: str
    plan_description: Optional[str] = None
    language: str = "en"

    user_id: str
    user_email: str
    user_name: str
    user_phone: Optional[str] = None

    amount: float
    currency: str
    payment_status: PaymentStatus

    trx_reference_number: Optional[str] = None
    order_id: Optional[str] = None
    merchant_order_id: Optional[str] = None
    order_reference: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    masked_card: Optional[str] = None
    card_brand: Optional[str] = None
    card_data_token: Optional[str] = None
    signature: Optional[str] = None
    mode: Optional[PaymentMode] = None

    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class GatewayFields(BaseModel):
    """Fields a callback may contribute to a transaction."""
    trx_reference_number: Optional[str] = None
    merchant_order_id: Optional[str] = None
    order_reference: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    masked_card: Optional[str] = None
    card_brand: Optional[str] = None
    card_data_token: Optional[str] = None
    signature: Optional[str] = None
    mode: Optional[PaymentMode] = None


class SubscriptionHistoryEntry(BaseModel):
    transaction_id: str
    plan: SubscriptionPlan
    activated_at: datetime
    valid_until: datetime
    amount: float
    currency: str
    trx_reference_number: Optional[str] = None


class UserSubscription(BaseModel):
    plan: SubscriptionPlan = SubscriptionPlan.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None  # None <=> free
    credits_remaining: Optional[int] = None  # flex_pack only
    renewal_date: Optional[datetime] = None  # annual_pass only
    next_billing_date: Optional[datetime] = None  # annual_pass only
    last_payment_date: Optional[datetime] = None


class TransactionStatus(BaseModel):
    """What the polling client sees."""
    transaction_id: str
    payment_status: PaymentStatus
    plan_id: PlanId
    amount: float
    currency: str
