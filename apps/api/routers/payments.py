"""Payments router: plan catalog, order creation, confirmation and gateway webhook."""

from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_account_context, get_auth_context
from routers.rate_limit import rate_limit
from services.errors import GatewayUnavailable, InvalidPlan, InvalidSignature, NetworkTimeout, NotFound
from services.payments import (
    PRICING_PLANS,
    confirm_order,
    initiate_order,
    parse_webhook_event,
    reconcile,
    verify_webhook_signature,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class CreatePaymentRequest(BaseModel):
    plan_id: str = Field(min_length=1, max_length=32)
    user_id: Optional[str] = None


class ConfirmPaymentRequest(BaseModel):
    order_id: str = Field(min_length=1, max_length=128)
    user_id: Optional[str] = None


def _header(request: Request, *names: str) -> Optional[str]:
    for name in names:
        value = request.headers.get(name)
        if value:
            return value
    return None


@router.get("/plans")
async def list_plans():
    return {"plans": [plan.as_dict() for plan in PRICING_PLANS.values()]}


@router.post("/create")
async def create_payment(
    request: CreatePaymentRequest,
    _rate_limit: None = Depends(rate_limit("payments_create", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    try:
        return await initiate_order(scoped_user_id, db, request.plan_id, email=auth.email)
    except InvalidPlan as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/confirm")
async def confirm_payment(
    request: ConfirmPaymentRequest,
    _rate_limit: None = Depends(rate_limit("payments_confirm", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Reconcile an order after the checkout redirect, using the gateway's view of it."""
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    try:
        return await confirm_order(request.order_id, db, user_id=scoped_user_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidPlan as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (GatewayUnavailable, NetworkTimeout) as exc:
        logger.warning("Payment confirmation for %s could not reach the gateway: %s", request.order_id, exc)
        raise HTTPException(status_code=503, detail="Payment gateway unavailable. Try again shortly.") from exc


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Gateway order notifications. The raw body is what the signature covers."""
    raw_body = await request.body()
    try:
        verify_webhook_signature(
            raw_body,
            signature=_header(request, "x-webhook-signature", "x-cashfree-signature"),
            timestamp=_header(request, "x-webhook-timestamp", "x-cashfree-timestamp"),
        )
    except InvalidSignature as exc:
        logger.warning("Rejected payment webhook: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        order_id, order_status = parse_webhook_event(json.loads(raw_body or b"{}"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid webhook payload: {exc}") from exc

    logger.info("Payment webhook received order=%s status=%s", order_id, order_status)
    try:
        result = await reconcile(order_id, db, gateway_status=order_status)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidPlan as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, **result}
