"""
Server-side purchase tracking
---
Reports completed purchases to the Meta Conversions API and the GA4
Measurement Protocol. Runs as background tasks after activation; nothing here
may fail or delay reconciliation, so every error is logged and dropped.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Optional

import httpx

from config.settings import settings
from src.models.payment import Transaction

logger = logging.getLogger(__name__)

META_GRAPH_URL = "https://graph.facebook.com/v18.0/{pixel_id}/events"
GA_COLLECT_URL = "https://www.google-analytics.com/mp/collect"


def _sha256(value: str) -> str:
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()


class PurchaseTracker:
    """Fire-and-forget purchase events. Unconfigured destinations are skipped."""

    def __init__(
        self,
        meta_pixel_id: str = "",
        meta_access_token: str = "",
        ga_measurement_id: str = "",
        ga_api_secret: str = "",
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.meta_pixel_id = meta_pixel_id
        self.meta_access_token = meta_access_token
        self.ga_measurement_id = ga_measurement_id
        self.ga_api_secret = ga_api_secret
        self.timeout = timeout
        self.transport = transport
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls) -> "PurchaseTracker":
        return cls(
            meta_pixel_id=settings.META_PIXEL_ID,
            meta_access_token=settings.META_ACCESS_TOKEN,
            ga_measurement_id=settings.GA_MEASUREMENT_ID,
            ga_api_secret=settings.GA_API_SECRET,
        )

    @property
    def meta_enabled(self) -> bool:
        return bool(self.meta_pixel_id and self.meta_access_token)

    @property
    def ga_enabled(self) -> bool:
        return bool(self.ga_measurement_id and self.ga_api_secret)

    @property
    def enabled(self) -> bool:
        return self.meta_enabled or self.ga_enabled

    def schedule(self, txn: Transaction) -> Optional[asyncio.Task]:
        """Start tracking in the background and return immediately."""
        if not self.enabled:
            return None
        task = asyncio.create_task(self._safe_track(txn))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight events (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _safe_track(self, txn: Transaction) -> None:
        try:
            await self.track_purchase(txn)
        except Exception:
            logger.exception(f"Purchase tracking failed for {txn.transaction_id}")

    async def track_purchase(self, txn: Transaction) -> None:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            if self.meta_enabled:
                await self._send_meta(client, txn)
            if self.ga_enabled:
                await self._send_ga(client, txn)

    async def _send_meta(self, client: httpx.AsyncClient, txn: Transaction) -> None:
        payload = {
            "data": [{
                "event_name": "Purchase",
                "event_time": int(time.time()),
                "event_id": txn.transaction_id,
                "action_source": "website",
                "user_data": {"em": [_sha256(txn.user_email)], "external_id": [_sha256(txn.user_id)]},
                "custom_data": {
                    "value": txn.amount,
                    "currency": txn.currency,
                    "content_ids": [txn.plan_id.value],
                    "content_name": txn.plan_name,
                    "content_type": "product",
                },
            }],
        }
        try:
            resp = await client.post(
                META_GRAPH_URL.format(pixel_id=self.meta_pixel_id),
                params={"access_token": self.meta_access_token},
                json=payload,
            )
            if resp.status_code >= 400:
                logger.warning(f"Meta purchase event rejected ({resp.status_code}): {resp.text[:200]}")
        except httpx.HTTPError as exc:
            logger.warning(f"Meta purchase event failed for {txn.transaction_id}: {exc}")

    async def _send_ga(self, client: httpx.AsyncClient, txn: Transaction) -> None:
        payload = {
            "client_id": txn.user_id,
            "user_id": txn.user_id,
            "events": [{
                "name": "purchase",
                "params": {
                    "transaction_id": txn.transaction_id,
                    "value": txn.amount,
                    "currency": txn.currency,
                    "items": [{
                        "item_id": txn.plan_id.value,
                        "item_name": txn.plan_name,
                        "price": txn.amount,
                        "quantity": 1,
                    }],
                },
            }],
        }
        try:
            resp = await client.post(
                GA_COLLECT_URL,
                params={"measurement_id": self.ga_measurement_id, "api_secret": self.ga_api_secret},
                json=payload,
            )
            if resp.status_code >= 400:
                logger.warning(f"GA purchase event rejected ({resp.status_code})")
        except httpx.HTTPError as exc:
            logger.warning(f"GA purchase event failed for {txn.transaction_id}: {exc}")


purchase_tracker = PurchaseTracker.from_settings()
