"""Entitlement ledger: credit balance, debits, grants and creation logging."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.creation import Creation
from models.user import User
from services.errors import InsufficientCredits, NotFound

logger = logging.getLogger(__name__)

CONTENT_TYPES = ("text", "image", "video")


def _serialize_account(user: User) -> Dict[str, Any]:
    return {
        "user_id": user.id,
        "email": user.email,
        "credits_remaining": int(user.credits_remaining or 0),
        "total_creations": int(user.total_creations or 0),
        "subscription_status": user.subscription_status or "free",
        "last_creation_at": user.last_creation_at.isoformat() if user.last_creation_at else None,
    }


async def _current_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(User.credits_remaining).where(User.id == user_id))
    return int(result.scalar_one())


async def _account_exists(user_id: str, db: AsyncSession) -> bool:
    result = await db.execute(select(User.id).where(User.id == user_id))
    return result.scalar_one_or_none() is not None


async def create_account(user_id: str, db: AsyncSession, *, email: Optional[str] = None) -> User:
    """Create the account on first authentication, or return the existing one unchanged."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        id=user_id,
        email=email or f"{user_id}@local.invalid",
        credits_remaining=max(int(settings.SIGNUP_FREE_CREDITS), 0),
        total_creations=0,
        subscription_status="free",
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Lost an insert race with a concurrent first request for the same user.
        await db.rollback()
        result = await db.execute(select(User).where(User.id == user_id))
        existing = result.scalar_one_or_none()
        if existing is None:
            raise
        return existing

    logger.info("ledger_account_created user=%s credits=%s", user_id, user.credits_remaining)
    return user


async def get_balance(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound(f"Account {user_id} not found.")
    await db.refresh(user)
    return _serialize_account(user)


async def debit_one(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Spend one credit with a single decrement-if-positive statement.

    Concurrent callers are serialized by the row update itself; a caller that
    loses the race sees zero affected rows and gets ``InsufficientCredits``.
    """
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.credits_remaining >= 1)
        .values(credits_remaining=User.credits_remaining - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        if not await _account_exists(user_id, db):
            raise NotFound(f"Account {user_id} not found.")
        raise InsufficientCredits(
            "Insufficient credits. Please purchase more credits to continue generating content."
        )

    balance_after = await _current_balance(user_id, db)
    await db.commit()
    logger.info("ledger_debit user=%s balance_after=%s", user_id, balance_after)
    return {"charged": 1, "balance_after": balance_after}


async def credit(user_id: str, db: AsyncSession, amount: int, *, commit: bool = True) -> Dict[str, Any]:
    """Atomically add credits and refresh the display-only subscription label.

    With ``commit=False`` the caller owns the transaction, so the grant can be
    committed together with other row changes.
    """
    grant = int(amount)
    if grant <= 0:
        raise ValueError("amount must be greater than 0")

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            credits_remaining=User.credits_remaining + grant,
            subscription_status=case(
                (User.credits_remaining + grant > 1, "premium"),
                else_="free",
            ),
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFound(f"Account {user_id} not found.")

    balance_after = await _current_balance(user_id, db)
    if commit:
        await db.commit()
    logger.info("ledger_credit user=%s amount=%s balance_after=%s", user_id, grant, balance_after)
    return {"credited": grant, "balance_after": balance_after}


async def record_creation(
    user_id: str,
    db: AsyncSession,
    *,
    content_type: str,
    prompt: str,
    result_url: Optional[str],
    metadata: Optional[Dict[str, Any]] = None,
    cost: int = 1,
) -> Creation:
    """Append a creation and bump the account's creation counters in one transaction."""
    if content_type not in CONTENT_TYPES:
        raise ValueError(f"Unsupported content type: {content_type}")

    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_creations=User.total_creations + 1, last_creation_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFound(f"Account {user_id} not found.")

    creation = Creation(
        user_id=user_id,
        type=content_type,
        prompt=prompt,
        result_url=result_url,
        metadata_json=dict(metadata or {}),
        cost_credits=int(cost),
        created_at=now,
    )
    db.add(creation)
    await db.commit()
    logger.info(
        "ledger_creation user=%s type=%s creation=%s mode=%s",
        user_id,
        content_type,
        creation.id,
        (metadata or {}).get("mode") or (metadata or {}).get("provider"),
    )
    return creation


def serialize_creation(creation: Creation) -> Dict[str, Any]:
    return {
        "id": creation.id,
        "type": creation.type,
        "prompt": creation.prompt,
        "result_url": creation.result_url,
        "metadata": creation.metadata_json or {},
        "cost_credits": int(creation.cost_credits or 0),
        "created_at": creation.created_at.isoformat() if creation.created_at else None,
    }


async def list_creations(
    user_id: str,
    db: AsyncSession,
    *,
    content_type: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    query = select(Creation).where(Creation.user_id == user_id)
    if content_type:
        query = query.where(Creation.type == content_type)
    query = query.order_by(Creation.created_at.desc()).limit(max(1, min(int(limit), 200)))
    result = await db.execute(query)
    return [serialize_creation(item) for item in result.scalars().all()]
