"""Bearer-token caller identity — lightweight HS256 JWT, no extra deps.

Tokens are minted by the identity bridge with AUTH_JWT_SECRET; `sub` is the
provider uid, which is also our user id.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import settings

_JWT_ALGO = "HS256"
_ACCESS_TTL = 3600 * 24 * 7  # 7 days


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s)


def _sign(payload: dict) -> str:
    header = _b64url(json.dumps({"alg": _JWT_ALGO, "typ": "JWT"}).encode())
    body = _b64url(json.dumps(payload).encode())
    sig_input = f"{header}.{body}".encode()
    sig = hmac.new(settings.AUTH_JWT_SECRET.encode(), sig_input, hashlib.sha256).digest()
    return f"{header}.{body}.{_b64url(sig)}"


def _verify(token: str) -> Optional[dict]:
    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        sig_input = f"{parts[0]}.{parts[1]}".encode()
        expected = hmac.new(settings.AUTH_JWT_SECRET.encode(), sig_input, hashlib.sha256).digest()
        if not hmac.compare_digest(expected, _b64url_decode(parts[2])):
            return None
        payload = json.loads(_b64url_decode(parts[1]))
    except (ValueError, TypeError):
        return None
    if not isinstance(payload, dict) or payload.get("exp", 0) < time.time():
        return None
    return payload


def create_access_token(user_id: str, ttl: int = _ACCESS_TTL) -> str:
    now = int(time.time())
    return _sign({"sub": user_id, "iat": now, "exp": now + ttl, "type": "access", "jti": uuid.uuid4().hex[:8]})


# ---- FastAPI dependencies ----

_bearer = HTTPBearer(auto_error=False)


async def get_caller_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[str]:
    """The authenticated user id, or None for anonymous callers (e.g. the gateway)."""
    if not creds:
        return None
    payload = _verify(creds.credentials)
    if not payload or payload.get("type") != "access" or not payload.get("sub"):
        return None
    return str(payload["sub"])


async def require_caller(caller_id: Optional[str] = Depends(get_caller_id)) -> str:
    if not caller_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return caller_id
