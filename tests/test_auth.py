"""Tests for bearer-token caller identity."""
from __future__ import annotations

from unittest.mock import patch

from src import auth


def test_round_trip():
    token = auth.create_access_token("user-9")
    payload = auth._verify(token)
    assert payload["sub"] == "user-9"
    assert payload["type"] == "access"


def test_expired_token_rejected():
    assert auth._verify(auth.create_access_token("user-9", ttl=-10)) is None


def test_wrong_secret_rejected():
    token = auth.create_access_token("user-9")
    with patch.object(auth.settings, "AUTH_JWT_SECRET", "another-secret"):
        assert auth._verify(token) is None


def test_garbage_rejected():
    assert auth._verify("") is None
    assert auth._verify("a.b") is None
    assert auth._verify("a.b.c") is None
