"""Tests for request ID tracing middleware."""
import logging

import pytest

from src.logging_config import JSONFormatter, RequestIDFilter
from src.middleware.request_id import request_id_var


@pytest.mark.asyncio
async def test_response_includes_request_id(client):
    """Every response should have X-Request-ID header."""
    resp = await client.get("/health")
    assert "x-request-id" in resp.headers
    rid = resp.headers["x-request-id"]
    assert len(rid) == 36  # UUID format


@pytest.mark.asyncio
async def test_gateway_request_id_honored(client):
    """If the caller sends X-Request-ID, server should echo it back."""
    resp = await client.post(
        "/api/v1/payments/webhook/TRX-NONE",
        json={"paymentStatus": "SUCCESS"},
        headers={"X-Request-ID": "kashier-trace-12345"},
    )
    assert resp.headers["x-request-id"] == "kashier-trace-12345"


@pytest.mark.asyncio
async def test_unique_ids_per_request(client):
    r1 = await client.get("/health")
    r2 = await client.get("/health")
    assert r1.headers["x-request-id"] != r2.headers["x-request-id"]


def test_log_records_carry_request_id():
    record = logging.LogRecord("payments", logging.INFO, __file__, 1, "reconciled %s", ("txn_1",), None)
    token = request_id_var.set("req-42")
    try:
        RequestIDFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "req-42"
    line = JSONFormatter().format(record)
    assert '"request_id": "req-42"' in line
    assert '"message": "reconciled txn_1"' in line
