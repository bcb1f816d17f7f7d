"""User API routes — profile upsert and the caller's subscription.

Accounts are keyed by the identity provider's uid. A new account always starts
on the free plan; only the activator ever changes `subscription`.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.auth import require_caller
from src.db.engine import get_session
from src.db.user_tables import UserRow, free_subscription
from src.services.activation import load_subscription
from src.services.payment_errors import UserNotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


class ProfileUpdate(BaseModel):
    email: Optional[str] = Field(None, max_length=320)
    display_name: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=40)


def _profile(user: UserRow) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "phone": user.phone,
        "subscription": load_subscription(user).model_dump(mode="json", exclude_none=True),
    }


@router.put("/me")
async def upsert_profile(
    req: ProfileUpdate,
    caller_id: str = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
):
    """Create the caller's account on first call, otherwise update profile fields."""
    user = (await session.execute(select(UserRow).where(UserRow.id == caller_id))).scalar_one_or_none()
    if user is None:
        user = UserRow(
            id=caller_id,
            email=req.email,
            display_name=req.display_name,
            phone=req.phone,
            subscription=free_subscription(),
            subscription_history=[],
        )
        session.add(user)
        logger.info(f"User account created: {caller_id}")
    else:
        for field, value in req.model_dump(exclude_none=True).items():
            setattr(user, field, value)
    await session.commit()
    return _profile(user)


@router.get("/me/subscription")
async def my_subscription(
    caller_id: str = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
):
    user = (await session.execute(select(UserRow).where(UserRow.id == caller_id))).scalar_one_or_none()
    if user is None:
        raise UserNotFound(f"User account not found: {caller_id}")
    return {
        "subscription": load_subscription(user).model_dump(mode="json", exclude_none=True),
        "subscription_history": list(user.subscription_history or []),
        "last_transaction_id": user.last_transaction_id,
    }
