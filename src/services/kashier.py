"""
Kashier gateway protocol helpers
---
Order hash for the hosted payment page, callback signature verification,
credential selection by mode, and the checkout URL itself.

Hash:      HMAC-SHA256(api_key, "/?payment=<mid>.<orderId>.<amount>.<currency>[.<customerReference>]")
Signature: HMAC-SHA256(secret, "k1=v1&k2=v2..." over the callback params in
           received order, excluding `signature` and `mode`)

See: https://developers.kashier.io/
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union
from urllib.parse import urlencode

from config.settings import settings
from src.models.payment import PaymentMode
from src.services.payment_errors import GatewayNotConfigured

logger = logging.getLogger(__name__)

# Keys never covered by the callback signature
UNSIGNED_KEYS = frozenset({"signature", "mode"})

Params = Union[Mapping[str, str], Iterable[tuple[str, str]]]


@dataclass(frozen=True)
class KashierCredentials:
    merchant_id: str
    api_key: str
    secret_key: str
    mode: PaymentMode


def mode_for_user(user_id: Optional[str]) -> PaymentMode:
    """Configured test users go through the sandbox; everyone else uses KASHIER_MODE."""
    if user_id and user_id in settings.KASHIER_TEST_USER_IDS:
        return PaymentMode.TEST
    try:
        return PaymentMode(settings.KASHIER_MODE.lower())
    except ValueError:
        logger.warning(f"KASHIER_MODE={settings.KASHIER_MODE!r} is not test/live — using live")
        return PaymentMode.LIVE


def credentials_for_mode(mode: PaymentMode | str) -> KashierCredentials:
    mode = PaymentMode(mode)
    if mode is PaymentMode.TEST:
        merchant_id = settings.KASHIER_TEST_MERCHANT_ID
        api_key = settings.KASHIER_TEST_API_KEY
        secret_key = settings.KASHIER_TEST_SECRET_KEY
    else:
        merchant_id = settings.KASHIER_MERCHANT_ID
        api_key = settings.KASHIER_API_KEY
        secret_key = settings.KASHIER_SECRET_KEY

    if not merchant_id or not api_key:
        raise GatewayNotConfigured(f"Kashier {mode.value} credentials are not configured")
    return KashierCredentials(
        merchant_id=merchant_id,
        api_key=api_key,
        secret_key=secret_key or api_key,
        mode=mode,
    )


def format_amount(amount: float) -> str:
    return f"{amount:.2f}"


def hash_path(
    merchant_id: str,
    order_id: str,
    amount: str,
    currency: str,
    customer_reference: Optional[str] = None,
) -> str:
    path = f"/?payment={merchant_id}.{order_id}.{amount}.{currency}"
    if customer_reference:
        path += f".{customer_reference}"
    return path


def order_hash(
    merchant_id: str,
    order_id: str,
    amount: str,
    currency: str,
    api_key: str,
    customer_reference: Optional[str] = None,
) -> str:
    """Integrity hash the hosted payment page requires for an order."""
    path = hash_path(merchant_id, order_id, amount, currency, customer_reference)
    return hmac.new(api_key.encode("utf-8"), path.encode("utf-8"), hashlib.sha256).hexdigest()


def _items(params: Params) -> list[tuple[str, str]]:
    if isinstance(params, Mapping):
        return [(k, v) for k, v in params.items()]
    return list(params)


def callback_signature(params: Params, secret: str) -> str:
    """Signature the gateway attaches to redirects and webhooks."""
    query = "&".join(
        f"{key}={'' if value is None else value}"
        for key, value in _items(params)
        if key not in UNSIGNED_KEYS
    )
    return hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_callback_signature(params: Params, signature: str, secret: str) -> bool:
    if not signature or not secret:
        return False
    expected = callback_signature(params, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def build_checkout_url(
    creds: KashierCredentials,
    *,
    order_id: str,
    amount: str,
    currency: str,
    order_hash_value: str,
    merchant_redirect: str,
    server_webhook: Optional[str] = None,
    language: str = "en",
    customer_email: Optional[str] = None,
) -> str:
    """Hosted payment page URL for an order."""
    query = {
        "merchantId": creds.merchant_id,
        "orderId": order_id,
        "amount": amount,
        "currency": currency,
        "hash": order_hash_value,
        "mode": creds.mode.value,
        "merchantRedirect": merchant_redirect,
        "display": language,
        "allowedMethods": "card,wallet",
        "redirectMethod": "get",
    }
    if server_webhook:
        query["serverWebhook"] = server_webhook
    if customer_email:
        query["customerEmail"] = customer_email
    return f"{settings.KASHIER_CHECKOUT_BASE.rstrip('/')}/?{urlencode(query)}"
