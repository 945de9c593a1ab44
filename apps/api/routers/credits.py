"""Credits router: balance, gallery and anonymous usage info."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_account_context, get_auth_context
from routers.rate_limit import client_identifier
from services import ledger
from services.usage_limits import ANONYMOUS_BUCKET, DailyUsageCounter, get_daily_usage_counter

router = APIRouter()


def usage_bucket_for(request: Request) -> str:
    if settings.FREE_USAGE_PER_CLIENT:
        return f"client:{client_identifier(request)}"
    return ANONYMOUS_BUCKET


@router.get("/balance")
async def credits_balance(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_account_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    return await ledger.get_balance(scoped_user_id, db)


@router.get("/creations")
async def list_creations(
    content_type: Optional[str] = Query(default=None, alias="type"),
    limit: int = Query(default=50, ge=1, le=200),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Newest-first gallery of the caller's creations, optionally filtered by type."""
    if content_type and content_type not in ledger.CONTENT_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of {', '.join(ledger.CONTENT_TYPES)}")
    creations = await ledger.list_creations(auth.user_id, db, content_type=content_type, limit=limit)
    return {"creations": creations, "count": len(creations)}


@router.get("/usage")
async def anonymous_usage(
    request: Request,
    counter: DailyUsageCounter = Depends(get_daily_usage_counter),
):
    decision = await counter.peek(usage_bucket_for(request))
    return decision.as_dict()
