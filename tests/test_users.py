"""Tests for user profile routes and the free-plan default."""
from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_new_account_starts_free(client, auth):
    resp = await client.put(
        "/api/v1/users/me",
        json={"email": "new@example.com", "display_name": "New User"},
        headers=auth("user-new"),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == "user-new"
    assert data["subscription"] == {"plan": "free", "status": "active"}

    sub = await client.get("/api/v1/users/me/subscription", headers=auth("user-new"))
    assert sub.status_code == 200
    assert sub.json()["subscription"]["plan"] == "free"
    assert "expiration_date" not in sub.json()["subscription"]
    assert sub.json()["subscription_history"] == []
    assert sub.json()["last_transaction_id"] is None


@pytest.mark.asyncio
async def test_profile_update_leaves_subscription(client, auth):
    checkout = await client.post("/api/v1/payments/checkout", json={"plan_id": "one_time"}, headers=auth())
    await client.get(
        f"/api/v1/payments/approved/{checkout.json()['trx_reference_number']}",
        params={"paymentStatus": "SUCCESS"},
    )
    resp = await client.put("/api/v1/users/me", json={"display_name": "Renamed"}, headers=auth())
    assert resp.status_code == 200
    assert resp.json()["display_name"] == "Renamed"
    assert resp.json()["email"] == "user1@example.com"
    assert resp.json()["subscription"]["plan"] == "one_time"


@pytest.mark.asyncio
async def test_subscription_requires_account(client, auth):
    resp = await client.get("/api/v1/users/me/subscription", headers=auth("ghost"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "user_not_found"


@pytest.mark.asyncio
async def test_profile_requires_auth(client):
    resp = await client.put("/api/v1/users/me", json={"display_name": "x"})
    assert resp.status_code == 401
    resp = await client.put(
        "/api/v1/users/me", json={"display_name": "x"}, headers={"Authorization": "Bearer not.a.token"},
    )
    assert resp.status_code == 401
