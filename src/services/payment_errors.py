"""Typed failures raised by the payment core.

Each carries the HTTP status and machine code the API layer renders into the
standard error envelope, plus the transaction id when one is known so the user
can quote it to support.
"""
from __future__ import annotations

from typing import Optional


class PaymentError(Exception):
    code = "payment_error"
    status_code = 400

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.transaction_id = transaction_id


class UnknownPlan(PaymentError):
    code = "unknown_plan"
    status_code = 400

    def __init__(self, plan_id: str):
        super().__init__(f"Unknown plan: {plan_id}")
        self.plan_id = plan_id


class NotFound(PaymentError):
    code = "not_found"
    status_code = 404


class TransactionNotFound(NotFound):
    code = "transaction_not_found"


class UserNotFound(NotFound):
    code = "user_not_found"


class Unauthorized(PaymentError):
    code = "unauthorized"
    status_code = 403


class TransactionNotSuccessful(PaymentError):
    code = "transaction_not_successful"
    status_code = 409


class InvalidSignature(PaymentError):
    code = "invalid_signature"
    status_code = 401


class GatewayNotConfigured(PaymentError):
    code = "gateway_not_configured"
    status_code = 503


class ActivationFailed(PaymentError):
    """Payment is recorded as successful but the entitlement write did not commit."""
    code = "activation_failed"
    status_code = 503
