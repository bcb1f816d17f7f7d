"""End-to-end payment flow over HTTP: checkout → callback → status → receipt."""
from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from src.services.kashier import order_hash


async def _checkout(client, auth, plan_id: str = "flex_pack", user_id: str = "user-1", language: str = "en") -> dict:
    resp = await client.post(
        "/api/v1/payments/checkout",
        json={"plan_id": plan_id, "language": language},
        headers=auth(user_id),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Checkout ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_checkout_returns_signed_payment_page(client, auth):
    data = await _checkout(client, auth)
    assert data["transaction_id"].startswith("txn_")
    assert data["order_id"].startswith("order_flex_pack_")
    assert data["trx_reference_number"].startswith("TRX-")
    assert data["amount"] == "149.00"
    assert data["currency"] == "EGP"
    assert data["mode"] == "live"
    assert data["hash"] == order_hash("MID-LIVE-1", data["order_id"], "149.00", "EGP", "live-api-key")
    assert data["hash_path"] == f"/?payment=MID-LIVE-1.{data['order_id']}.149.00.EGP"

    query = parse_qs(urlparse(data["redirect_url"]).query)
    ref = data["trx_reference_number"]
    assert query["merchantRedirect"] == [f"https://cv.example.com/payment-approved/{ref}"]
    assert query["serverWebhook"] == [f"https://api.example.com/api/v1/payments/webhook/{ref}"]


@pytest.mark.asyncio
async def test_sandbox_users_get_test_mode(client, auth, make_user):
    await make_user("sandbox-user", "qa@example.com")
    data = await _checkout(client, auth, user_id="sandbox-user")
    assert data["mode"] == "test"
    assert data["hash"] == order_hash("MID-TEST-1", data["order_id"], "149.00", "EGP", "test-api-key")


@pytest.mark.asyncio
async def test_checkout_unknown_plan(client, auth):
    resp = await client.post("/api/v1/payments/checkout", json={"plan_id": "gold"}, headers=auth())
    assert resp.status_code == 400
    assert resp.json()["error"] == "unknown_plan"
    listed = await client.get("/api/v1/payments/transactions", headers=auth())
    assert listed.json()["transactions"] == []


@pytest.mark.asyncio
async def test_checkout_requires_auth_and_profile(client, auth):
    resp = await client.post("/api/v1/payments/checkout", json={"plan_id": "one_time"})
    assert resp.status_code == 401
    resp = await client.post("/api/v1/payments/checkout", json={"plan_id": "one_time"}, headers=auth("nobody"))
    assert resp.status_code == 404
    assert resp.json()["error"] == "user_not_found"


# ── Callbacks ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approved_redirect_activates(client, auth):
    data = await _checkout(client, auth)
    ref = data["trx_reference_number"]
    resp = await client.get(
        f"/api/v1/payments/approved/{ref}",
        params={"paymentStatus": "SUCCESS", "merchantOrderId": data["order_id"], "maskedCard": "512345******0008"},
        headers=auth(),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["payment_status"] == "success"
    assert body["activated"] is True
    assert body["subscription"]["plan"] == "flex_pack"
    assert body["subscription"]["credits_remaining"] == 5

    status = await client.get("/api/v1/payments/status", params={"transactionId": data["transaction_id"]})
    assert status.json() == {
        "transaction_id": data["transaction_id"],
        "payment_status": "success",
        "plan_id": "flex_pack",
        "amount": 149.0,
        "currency": "EGP",
    }


@pytest.mark.asyncio
async def test_approved_redirect_for_another_user(client, auth, make_user):
    await make_user("user-2", "two@example.com")
    data = await _checkout(client, auth)
    resp = await client.get(
        f"/api/v1/payments/approved/{data['trx_reference_number']}",
        params={"paymentStatus": "SUCCESS"},
        headers=auth("user-2"),
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "unauthorized"
    status = await client.get("/api/v1/payments/status", params={"transactionId": data["transaction_id"]})
    assert status.json()["payment_status"] == "pending"


@pytest.mark.asyncio
async def test_webhook_json_with_data_envelope(client, auth):
    data = await _checkout(client, auth, plan_id="annual_pass")
    resp = await client.post(
        f"/api/v1/payments/webhook/{data['trx_reference_number']}",
        json={"event": "pay", "data": {
            "paymentStatus": "SUCCESS",
            "merchantOrderId": data["order_id"],
            "amount": 299,
            "currency": "EGP",
        }},
    )
    assert resp.status_code == 200
    assert resp.json()["activated"] is True

    sub = await client.get("/api/v1/users/me/subscription", headers=auth())
    assert sub.json()["subscription"]["plan"] == "annual_pass"
    assert len(sub.json()["subscription_history"]) == 1


@pytest.mark.asyncio
async def test_webhook_form_body_without_reference(client, auth):
    data = await _checkout(client, auth, plan_id="one_time")
    resp = await client.post(
        "/api/v1/payments/webhook",
        data={"paymentStatus": "FAILURE", "merchantOrderId": data["order_id"]},
    )
    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "failed"
    assert resp.json()["activated"] is False


@pytest.mark.asyncio
async def test_redirect_and_webhook_both_delivered(client, auth):
    data = await _checkout(client, auth)
    ref = data["trx_reference_number"]
    first = await client.get(f"/api/v1/payments/approved/{ref}", params={"paymentStatus": "SUCCESS"})
    second = await client.post(f"/api/v1/payments/webhook/{ref}", json={"paymentStatus": "SUCCESS"})
    assert first.json()["already_processed"] is False
    assert second.json()["already_processed"] is True

    sub = await client.get("/api/v1/users/me/subscription", headers=auth())
    assert len(sub.json()["subscription_history"]) == 1


@pytest.mark.asyncio
async def test_unknown_reference_returns_not_found(client):
    resp = await client.post("/api/v1/payments/webhook/TRX-MISSING", json={"paymentStatus": "SUCCESS"})
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "transaction_not_found"
    assert body["transaction_id"] == "TRX-MISSING"


@pytest.mark.asyncio
async def test_malformed_webhook_body(client):
    resp = await client.post(
        "/api/v1/payments/webhook/TRX-1",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_probe(client):
    resp = await client.get("/api/v1/payments/webhook")
    assert resp.status_code == 200


# ── Status, activation, recovery ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_status_unknown_transaction(client):
    resp = await client.get("/api/v1/payments/status", params={"transactionId": "txn_missing"})
    assert resp.status_code == 404
    assert resp.json()["transaction_id"] == "txn_missing"


@pytest.mark.asyncio
async def test_status_of_another_users_transaction(client, auth, make_user):
    await make_user("user-2", "two@example.com")
    data = await _checkout(client, auth)
    resp = await client.get(
        "/api/v1/payments/status", params={"transactionId": data["transaction_id"]}, headers=auth("user-2"),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_activate_pending_transaction_conflicts(client, auth):
    data = await _checkout(client, auth)
    resp = await client.post(
        "/api/v1/payments/activate", json={"transaction_id": data["transaction_id"]}, headers=auth(),
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "transaction_not_successful"


@pytest.mark.asyncio
async def test_activate_is_idempotent(client, auth):
    data = await _checkout(client, auth)
    await client.get(f"/api/v1/payments/approved/{data['trx_reference_number']}", params={"paymentStatus": "PAID"})
    resp = await client.post(
        "/api/v1/payments/activate", json={"transaction_id": data["transaction_id"]}, headers=auth(),
    )
    assert resp.status_code == 200
    assert resp.json()["created"] is False
    assert resp.json()["subscription"]["plan"] == "flex_pack"


@pytest.mark.asyncio
async def test_activate_other_users_transaction(client, auth, make_user):
    await make_user("user-2", "two@example.com")
    data = await _checkout(client, auth)
    resp = await client.post(
        "/api/v1/payments/activate", json={"transaction_id": data["transaction_id"]}, headers=auth("user-2"),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_recover_unactivated_payment(client, auth, session):
    from src.db.transaction_repository import TransactionRepository
    from src.models.payment import PaymentStatus

    data = await _checkout(client, auth, plan_id="one_time")
    await TransactionRepository(session).update_transaction_status(data["transaction_id"], PaymentStatus.SUCCESS)
    await session.commit()

    resp = await client.post("/api/v1/payments/recover", headers=auth())
    assert resp.status_code == 200
    assert resp.json()["recovered"] is True
    assert resp.json()["transaction_id"] == data["transaction_id"]
    assert resp.json()["subscription"]["plan"] == "one_time"

    again = await client.post("/api/v1/payments/recover", headers=auth())
    assert again.json() == {"recovered": False, "transaction_id": None}


# ── History and receipts ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_transactions_newest_first(client, auth):
    first = await _checkout(client, auth, plan_id="one_time")
    second = await _checkout(client, auth, plan_id="annual_pass")
    resp = await client.get("/api/v1/payments/transactions", headers=auth())
    ids = [t["transaction_id"] for t in resp.json()["transactions"]]
    assert ids == [second["transaction_id"], first["transaction_id"]]
    assert "user_email" not in resp.json()["transactions"][0]


@pytest.mark.asyncio
async def test_arabic_receipt(client, auth):
    data = await _checkout(client, auth, language="ar")
    await client.get(
        f"/api/v1/payments/approved/{data['trx_reference_number']}",
        params={"paymentStatus": "SUCCESS", "maskedCard": "512345******0008", "cardBrand": "Mastercard"},
    )
    resp = await client.get(
        "/api/v1/payments/receipt", params={"transactionId": data["transaction_id"], "lang": "ar"}, headers=auth(),
    )
    assert resp.status_code == 200
    receipt = resp.json()
    assert receipt["direction"] == "rtl"
    assert receipt["labels"]["title"] == "إيصال الدفع"
    assert receipt["status_text"] == "مدفوع"
    assert receipt["masked_card"] == "512345******0008"
    assert receipt["credits_remaining"] == 5
    assert receipt["valid_until"] is not None


@pytest.mark.asyncio
async def test_receipt_owner_only(client, auth, make_user):
    await make_user("user-2", "two@example.com")
    data = await _checkout(client, auth)
    resp = await client.get(
        "/api/v1/payments/receipt", params={"transactionId": data["transaction_id"]}, headers=auth("user-2"),
    )
    assert resp.status_code == 403
