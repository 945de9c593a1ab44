"""Credit-pack purchases: order initiation, webhook authenticity and reconciliation."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.payment import Payment
from services import ledger
from services.cashfree import CashfreeClient
from services.errors import GatewayUnavailable, InvalidPlan, InvalidSignature, NetworkTimeout, NotFound

logger = logging.getLogger(__name__)

ORDER_PREFIX = "aivault"
PAYMENT_CURRENCY = "INR"
PAID_STATUS = "PAID"
FAILED_GATEWAY_STATUSES = {"FAILED", "CANCELLED", "USER_DROPPED"}


@dataclass(frozen=True)
class PricingPlan:
    plan_id: str
    name: str
    credits: int
    price: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "name": self.name,
            "credits": self.credits,
            "price": self.price,
            "currency": PAYMENT_CURRENCY,
        }


PRICING_PLANS: Dict[str, PricingPlan] = {
    "basic": PricingPlan("basic", "Basic Pack", 5, 99),
    "pro": PricingPlan("pro", "Pro Pack", 12, 199),
    "premium": PricingPlan("premium", "Premium Pack", 30, 399),
}


def get_plan(plan_id: Optional[str]) -> PricingPlan:
    plan = PRICING_PLANS.get((plan_id or "").strip().lower())
    if plan is None:
        raise InvalidPlan("Invalid plan selected")
    return plan


def generate_order_id() -> str:
    return f"{ORDER_PREFIX}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def compute_webhook_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        timestamp.encode("utf-8") + raw_body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    raw_body: bytes,
    *,
    signature: Optional[str],
    timestamp: Optional[str],
    secret: Optional[str] = None,
) -> None:
    """Raise ``InvalidSignature`` unless the webhook headers authenticate ``raw_body``.

    Both headers are always required. The HMAC itself is only checked when a
    webhook secret is configured.
    """
    if not signature or not timestamp:
        raise InvalidSignature("Missing webhook signature or timestamp")

    webhook_secret = settings.CASHFREE_WEBHOOK_SECRET if secret is None else secret
    if not webhook_secret:
        logger.warning("CASHFREE_WEBHOOK_SECRET not configured; skipping signature verification")
        return

    expected = compute_webhook_signature(webhook_secret, timestamp, raw_body)
    if not hmac.compare_digest(expected, signature.strip()):
        raise InvalidSignature("Invalid webhook signature")


def parse_webhook_event(body: Any) -> Tuple[str, str]:
    """Pull ``(order_id, order_status)`` out of a gateway webhook body."""
    order = (body.get("data") or {}).get("order") if isinstance(body, dict) else None
    if not isinstance(order, dict):
        raise ValueError("Webhook body has no order")
    order_id = str(order.get("order_id") or "").strip()
    status = str(order.get("order_status") or "").strip().upper()
    if not order_id or not status:
        raise ValueError("Webhook order is missing order_id or order_status")
    return order_id, status


def _demo_descriptor(order_id: str, plan: PricingPlan, reason: str) -> Dict[str, Any]:
    return {
        "order_id": order_id,
        "amount": plan.price,
        "currency": PAYMENT_CURRENCY,
        "plan_id": plan.plan_id,
        "credits": plan.credits,
        "payment_url": f"/payment-demo?orderId={order_id}&amount={plan.price}&plan={plan.plan_id}",
        "demo": True,
        "error": reason,
    }


async def initiate_order(
    user_id: str,
    db: AsyncSession,
    plan_id: str,
    *,
    email: Optional[str] = None,
    gateway: Optional[CashfreeClient] = None,
) -> Dict[str, Any]:
    """Open a gateway order for a plan.

    When the gateway is unavailable a demo descriptor comes back instead and
    nothing is persisted.
    """
    plan = get_plan(plan_id)
    order_id = generate_order_id()
    customer_email = email or f"user-{user_id[:8]}@example.com"
    client = gateway or CashfreeClient()

    try:
        order = await client.create_order(
            order_id=order_id,
            amount=plan.price,
            currency=PAYMENT_CURRENCY,
            customer_id=user_id,
            customer_email=customer_email,
            note=f"AI Vault {plan.name} - {plan.credits} Credits",
        )
    except (GatewayUnavailable, NetworkTimeout) as exc:
        logger.warning("Payment gateway unavailable for order %s: %s", order_id, exc)
        return _demo_descriptor(order_id, plan, str(exc))

    payment = Payment(
        user_id=user_id,
        order_id=order_id,
        gateway_order_id=str(order.get("cf_order_id") or "") or None,
        payment_session_id=order.get("payment_session_id"),
        plan_id=plan.plan_id,
        credits=plan.credits,
        amount=plan.price,
        currency=PAYMENT_CURRENCY,
        status="pending",
    )
    db.add(payment)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        # The gateway order exists either way; the client can still pay.
        await db.rollback()
        logger.error("Could not store payment record %s: %s", order_id, exc)
    else:
        logger.info("payment_initiated user=%s order=%s plan=%s", user_id, order_id, plan.plan_id)

    return {
        "order_id": order_id,
        "payment_session_id": order.get("payment_session_id"),
        "gateway_order_id": order.get("cf_order_id"),
        "order_status": order.get("order_status"),
        "amount": plan.price,
        "currency": PAYMENT_CURRENCY,
        "plan_id": plan.plan_id,
        "credits": plan.credits,
        "demo": False,
    }


async def _load_payment(order_id: str, db: AsyncSession, user_id: Optional[str]) -> Dict[str, Any]:
    result = await db.execute(
        select(Payment.user_id, Payment.plan_id, Payment.credits, Payment.status).where(Payment.order_id == order_id)
    )
    row = result.one_or_none()
    if row is None or (user_id is not None and row.user_id != user_id):
        raise NotFound("Payment not found")
    return {"user_id": row.user_id, "plan_id": row.plan_id, "credits": row.credits, "status": row.status}


async def _current_status(order_id: str, db: AsyncSession) -> str:
    result = await db.execute(select(Payment.status).where(Payment.order_id == order_id))
    return str(result.scalar_one())


async def mark_failed(order_id: str, db: AsyncSession, *, user_id: Optional[str] = None) -> Dict[str, Any]:
    """Flip a pending order to ``failed``; settled orders are left alone."""
    payment = await _load_payment(order_id, db, user_id)
    result = await db.execute(
        update(Payment)
        .where(Payment.order_id == order_id, Payment.status == "pending")
        .values(status="failed")
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    status = "failed" if result.rowcount else await _current_status(order_id, db)
    logger.info("payment_failed order=%s changed=%s status=%s", order_id, bool(result.rowcount), status)
    return {"order_id": order_id, "user_id": payment["user_id"], "status": status, "credited": 0}


async def reconcile(
    order_id: str,
    db: AsyncSession,
    *,
    gateway_status: str,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply a gateway status to the order; a PAID order grants its credits exactly once."""
    status = (gateway_status or "").strip().upper()
    if status in FAILED_GATEWAY_STATUSES:
        return await mark_failed(order_id, db, user_id=user_id)

    payment = await _load_payment(order_id, db, user_id)
    if status != PAID_STATUS:
        return {"order_id": order_id, "user_id": payment["user_id"], "status": payment["status"], "credited": 0}

    plan = get_plan(payment["plan_id"])
    result = await db.execute(
        update(Payment)
        .where(Payment.order_id == order_id, Payment.status == "pending")
        .values(status="completed", completed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        current = await _current_status(order_id, db)
        logger.info("payment_reconcile_noop order=%s status=%s", order_id, current)
        return {
            "order_id": order_id,
            "user_id": payment["user_id"],
            "status": current,
            "credited": 0,
            "already_processed": current == "completed",
            "credits": payment["credits"] if current == "completed" else 0,
        }

    try:
        grant = await ledger.credit(payment["user_id"], db, plan.credits, commit=False)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "payment_completed order=%s user=%s credits=%s balance_after=%s",
        order_id,
        payment["user_id"],
        plan.credits,
        grant["balance_after"],
    )
    return {
        "order_id": order_id,
        "user_id": payment["user_id"],
        "status": "completed",
        "credited": plan.credits,
        "balance_after": grant["balance_after"],
        "already_processed": False,
    }


async def confirm_order(
    order_id: str,
    db: AsyncSession,
    *,
    user_id: str,
    gateway: Optional[CashfreeClient] = None,
) -> Dict[str, Any]:
    """Client-side confirmation: ask the gateway for the order status, then reconcile.

    Gateway errors propagate so the caller can retry later.
    """
    payment = await _load_payment(order_id, db, user_id)
    if payment["status"] != "pending":
        return {
            "order_id": order_id,
            "user_id": user_id,
            "status": payment["status"],
            "credited": 0,
            "already_processed": payment["status"] == "completed",
        }

    order = await (gateway or CashfreeClient()).fetch_order(order_id)
    gateway_status = str(order.get("order_status") or "").strip().upper()
    if gateway_status == PAID_STATUS or gateway_status in FAILED_GATEWAY_STATUSES:
        return await reconcile(order_id, db, gateway_status=gateway_status, user_id=user_id)

    return {
        "order_id": order_id,
        "user_id": user_id,
        "status": "pending",
        "gateway_status": gateway_status or None,
        "credited": 0,
    }
