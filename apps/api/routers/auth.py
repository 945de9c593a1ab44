"""
Authentication router for identity session sync and account retrieval.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services import ledger
from services.errors import NotFound
from services.session_token import SyncNotConfigured, create_session_token, verify_sync_secret

router = APIRouter()
logger = logging.getLogger(__name__)


class SyncSessionRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    email: Optional[str] = None


class SyncSessionResponse(BaseModel):
    user_id: str
    email: str
    credits_remaining: int
    subscription_status: str
    session_token: str
    session_expires_at: int


class CurrentUserResponse(BaseModel):
    user_id: str
    email: str
    credits_remaining: int
    total_creations: int
    subscription_status: str
    last_creation_at: Optional[str] = None


def _check_sync_secret(supplied: Optional[str]) -> None:
    try:
        verified = verify_sync_secret(supplied)
    except SyncNotConfigured as exc:
        logger.error("Session sync refused: %s", exc)
        raise HTTPException(status_code=503, detail="Session sync is not configured.") from exc
    if not verified:
        raise HTTPException(status_code=401, detail="Invalid sync secret.")


@router.post("/sync", response_model=SyncSessionResponse)
async def sync_session(
    request: SyncSessionRequest,
    x_sync_secret: Optional[str] = Header(default=None, alias="X-Sync-Secret"),
    db: AsyncSession = Depends(get_db),
):
    """
    Exchange an identity-provider user for an API session, creating the account
    (with its signup credits) on first sight.
    """
    _check_sync_secret(x_sync_secret)

    user = await ledger.create_account(request.user_id, db, email=request.email)
    account = await ledger.get_balance(user.id, db)
    session = create_session_token(user.id, account["email"])
    logger.info("session_synced user=%s", user.id)

    return SyncSessionResponse(
        user_id=account["user_id"],
        email=account["email"],
        credits_remaining=account["credits_remaining"],
        subscription_status=account["subscription_status"],
        session_token=session["token"],
        session_expires_at=session["expires_at"],
    )


@router.get("/me", response_model=CurrentUserResponse)
async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Get the current account and its ledger state."""
    try:
        account = await ledger.get_balance(auth.user_id, db)
    except NotFound:
        raise HTTPException(status_code=404, detail="User not found")
    return CurrentUserResponse(**account)


@router.post("/logout")
async def logout(_auth: AuthContext = Depends(get_auth_context)):
    """Frontend-managed logout acknowledgment endpoint."""
    return {"message": "Logged out successfully"}
