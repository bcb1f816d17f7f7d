"""Tests for structured error responses."""
from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_payment_error_envelope(client):
    resp = await client.get("/api/v1/payments/status", params={"transactionId": "txn_nope"})
    assert resp.status_code == 404
    assert resp.json() == {
        "error": "transaction_not_found",
        "message": "Transaction not found: txn_nope",
        "transaction_id": "txn_nope",
    }


@pytest.mark.asyncio
async def test_validation_error_returns_structured_error(client):
    resp = await client.get("/api/v1/payments/status")
    assert resp.status_code == 422
    data = resp.json()
    assert data["error"] == "validation_error"
    assert isinstance(data["details"], list)


@pytest.mark.asyncio
async def test_activate_validation(client, auth):
    resp = await client.post("/api/v1/payments/activate", json={"transaction_id": ""}, headers=auth())
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_gateway_not_configured(client, auth, monkeypatch):
    from config.settings import settings
    monkeypatch.setattr(settings, "KASHIER_API_KEY", "")
    resp = await client.post("/api/v1/payments/checkout", json={"plan_id": "one_time"}, headers=auth())
    assert resp.status_code == 503
    assert resp.json()["error"] == "gateway_not_configured"


@pytest.mark.asyncio
async def test_activation_failure_is_503_with_transaction_id(client, auth, monkeypatch):
    from src.services.activation import SubscriptionActivator
    from src.services.payment_errors import ActivationFailed

    async def failing(self, transaction_id, now=None):
        raise ActivationFailed("Payment succeeded but the subscription could not be activated yet.", transaction_id)

    monkeypatch.setattr(SubscriptionActivator, "activate", failing)
    checkout = await client.post("/api/v1/payments/checkout", json={"plan_id": "one_time"}, headers=auth())
    txn_id = checkout.json()["transaction_id"]
    resp = await client.get(
        f"/api/v1/payments/approved/{checkout.json()['trx_reference_number']}",
        params={"paymentStatus": "SUCCESS"},
    )
    assert resp.status_code == 503
    assert resp.json()["error"] == "activation_failed"
    assert resp.json()["transaction_id"] == txn_id

    # The payment itself is recorded
    status = await client.get("/api/v1/payments/status", params={"transactionId": txn_id})
    assert status.json()["payment_status"] == "success"


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    ready = await client.get("/ready")
    assert ready.json() == {"ready": True}
