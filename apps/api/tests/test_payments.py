import asyncio
import json
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.future import select

from config import settings
from database import Base, get_db
from main import app
from models.payment import Payment
from models.user import User
from services import ledger
from services.cashfree import CashfreeClient
from services.errors import InvalidSignature
from services.payments import (
    compute_webhook_signature,
    generate_order_id,
    reconcile,
    verify_webhook_signature,
)
from services.session_token import create_session_token


TEST_USER_ID = "payments-user"
OTHER_USER_ID = "payments-other-user"
TEST_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(TEST_USER_ID)['token']}"}
OTHER_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(OTHER_USER_ID)['token']}"}
WEBHOOK_SECRET = "whsec_test_secret"


@pytest_asyncio.fixture
async def payments_env(tmp_path):
    db_path = tmp_path / "payments.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", connect_args={"timeout": 30})
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    with patch.object(settings, "SIGNUP_FREE_CREDITS", 1), patch.object(
        settings, "CASHFREE_WEBHOOK_SECRET", WEBHOOK_SECRET
    ), patch.object(settings, "CASHFREE_APP_ID", ""), patch.object(settings, "CASHFREE_SECRET_KEY", ""):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client, session_maker

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


async def _seed_order(session_maker, *, user_id=TEST_USER_ID, plan_id="pro", credits=12, balance=0) -> str:
    order_id = generate_order_id()
    async with session_maker() as db:
        await ledger.create_account(user_id, db)
        await db.execute(update(User).where(User.id == user_id).values(credits_remaining=balance))
        db.add(
            Payment(
                user_id=user_id,
                order_id=order_id,
                plan_id=plan_id,
                credits=credits,
                amount=199,
                currency="INR",
                status="pending",
            )
        )
        await db.commit()
    return order_id


async def _state(session_maker, order_id: str, user_id=TEST_USER_ID):
    async with session_maker() as db:
        status = (await db.execute(select(Payment.status).where(Payment.order_id == order_id))).scalar_one()
        balance = (await db.execute(select(User.credits_remaining).where(User.id == user_id))).scalar_one()
    return status, balance


def _webhook(order_id: str, status: str, *, secret: str = WEBHOOK_SECRET, timestamp: str = "1760000000"):
    raw = json.dumps(
        {"data": {"order": {"order_id": order_id, "order_status": status, "order_amount": 199}}}
    ).encode("utf-8")
    headers = {
        "content-type": "application/json",
        "x-webhook-timestamp": timestamp,
        "x-webhook-signature": compute_webhook_signature(secret, timestamp, raw),
    }
    return raw, headers


def test_order_ids_are_unique_and_prefixed():
    first, second = generate_order_id(), generate_order_id()
    assert first != second
    assert first.startswith("aivault_")
    assert len(first.split("_")[-1]) == 8


def test_signature_verification_requires_headers_and_matching_hmac():
    raw = b'{"data": {}}'
    good = compute_webhook_signature("s3cret", "123", raw)

    verify_webhook_signature(raw, signature=good, timestamp="123", secret="s3cret")
    verify_webhook_signature(raw, signature="anything", timestamp="123", secret="")

    with pytest.raises(InvalidSignature):
        verify_webhook_signature(raw, signature=None, timestamp="123", secret="")
    with pytest.raises(InvalidSignature):
        verify_webhook_signature(raw, signature=good, timestamp="124", secret="s3cret")
    with pytest.raises(InvalidSignature):
        verify_webhook_signature(raw + b" ", signature=good, timestamp="123", secret="s3cret")


@pytest.mark.asyncio
async def test_plans_catalog(payments_env):
    client, _ = payments_env
    response = await client.get("/payments/plans")
    assert response.status_code == 200
    plans = {plan["plan_id"]: plan for plan in response.json()["plans"]}
    assert plans["basic"]["credits"] == 5
    assert plans["pro"] == {"plan_id": "pro", "name": "Pro Pack", "credits": 12, "price": 199, "currency": "INR"}
    assert plans["premium"]["price"] == 399


@pytest.mark.asyncio
async def test_paid_webhook_grants_plan_credits_once(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker)

    raw, headers = _webhook(order_id, "PAID")
    response = await client.post("/payments/webhook", content=raw, headers=headers)
    assert response.status_code == 200
    assert response.json()["credited"] == 12
    assert await _state(session_maker, order_id) == ("completed", 12)

    duplicate = await client.post("/payments/webhook", content=raw, headers=headers)
    assert duplicate.status_code == 200
    assert duplicate.json()["credited"] == 0
    assert duplicate.json()["already_processed"] is True
    assert await _state(session_maker, order_id) == ("completed", 12)

    balance = await client.get("/credits/balance", headers=TEST_AUTH_HEADER)
    assert balance.json()["subscription_status"] == "premium"


@pytest.mark.asyncio
async def test_legacy_cashfree_header_names_are_accepted(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker, plan_id="basic", credits=5)

    raw, headers = _webhook(order_id, "PAID")
    legacy_headers = {
        "content-type": "application/json",
        "x-cashfree-timestamp": headers["x-webhook-timestamp"],
        "x-cashfree-signature": headers["x-webhook-signature"],
    }
    response = await client.post("/payments/webhook", content=raw, headers=legacy_headers)
    assert response.status_code == 200
    assert await _state(session_maker, order_id) == ("completed", 5)


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_mutates_nothing(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker)

    raw, headers = _webhook(order_id, "PAID", secret="someone-else")
    response = await client.post("/payments/webhook", content=raw, headers=headers)
    assert response.status_code == 400
    assert await _state(session_maker, order_id) == ("pending", 0)


@pytest.mark.asyncio
async def test_webhook_without_signature_headers_is_rejected(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker)

    raw, _ = _webhook(order_id, "PAID")
    response = await client.post("/payments/webhook", content=raw, headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert await _state(session_maker, order_id) == ("pending", 0)


@pytest.mark.asyncio
async def test_failed_order_is_never_credited(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker)

    raw, headers = _webhook(order_id, "USER_DROPPED")
    response = await client.post("/payments/webhook", content=raw, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "failed"

    raw, headers = _webhook(order_id, "PAID")
    late = await client.post("/payments/webhook", content=raw, headers=headers)
    assert late.status_code == 200
    assert late.json()["credited"] == 0
    assert await _state(session_maker, order_id) == ("failed", 0)


@pytest.mark.asyncio
async def test_webhook_for_unknown_order_is_404(payments_env):
    client, _ = payments_env
    raw, headers = _webhook("aivault_0_deadbeef", "PAID")
    response = await client.post("/payments/webhook", content=raw, headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_unknown_plan_on_pending_order_is_not_credited(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker, plan_id="enterprise", credits=500)

    raw, headers = _webhook(order_id, "PAID")
    response = await client.post("/payments/webhook", content=raw, headers=headers)
    assert response.status_code == 400
    assert await _state(session_maker, order_id) == ("pending", 0)


@pytest.mark.asyncio
async def test_repeated_reconciliation_is_idempotent(payments_env):
    _, session_maker = payments_env
    order_id = await _seed_order(session_maker, balance=3)

    results = []
    for _ in range(4):
        async with session_maker() as db:
            results.append(await reconcile(order_id, db, gateway_status="PAID"))

    assert [result["credited"] for result in results] == [12, 0, 0, 0]
    assert await _state(session_maker, order_id) == ("completed", 15)


@pytest.mark.asyncio
async def test_concurrent_paid_notifications_grant_once(payments_env):
    _, session_maker = payments_env
    order_id = await _seed_order(session_maker, balance=0)

    async def deliver():
        async with session_maker() as db:
            return await reconcile(order_id, db, gateway_status="PAID")

    results = await asyncio.gather(*(deliver() for _ in range(4)))

    assert sorted(result["credited"] for result in results) == [0, 0, 0, 12]
    assert sum(1 for result in results if result["already_processed"]) == 3
    assert await _state(session_maker, order_id) == ("completed", 12)


@pytest.mark.asyncio
async def test_create_without_gateway_returns_demo_descriptor(payments_env):
    client, session_maker = payments_env

    response = await client.post("/payments/create", json={"plan_id": "pro"}, headers=TEST_AUTH_HEADER)
    assert response.status_code == 200
    payload = response.json()
    assert payload["demo"] is True
    assert payload["payment_url"] == (
        f"/payment-demo?orderId={payload['order_id']}&amount=199&plan=pro"
    )

    async with session_maker() as db:
        count = await db.execute(select(func.count()).select_from(Payment))
        assert count.scalar_one() == 0


@pytest.mark.asyncio
async def test_create_rejects_unknown_plan(payments_env):
    client, _ = payments_env
    response = await client.post("/payments/create", json={"plan_id": "gold"}, headers=TEST_AUTH_HEADER)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_with_gateway_persists_pending_order(payments_env):
    client, session_maker = payments_env
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["headers"] = dict(request.headers)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"payment_session_id": "session_abc", "cf_order_id": 98765, "order_status": "ACTIVE"},
        )

    transport = httpx.MockTransport(handler)
    with patch.object(settings, "CASHFREE_APP_ID", "app_live_id"), patch.object(
        settings, "CASHFREE_SECRET_KEY", "secret_live_key"
    ), patch("services.payments.CashfreeClient", lambda: CashfreeClient(transport=transport)):
        response = await client.post("/payments/create", json={"plan_id": "premium"}, headers=TEST_AUTH_HEADER)

    assert response.status_code == 200
    payload = response.json()
    assert payload["demo"] is False
    assert payload["payment_session_id"] == "session_abc"
    assert seen["path"] == "/pg/orders"
    assert seen["headers"]["x-api-version"] == "2023-08-01"
    assert seen["headers"]["x-client-id"] == "app_live_id"
    assert seen["body"]["order_amount"] == 399
    assert seen["body"]["order_currency"] == "INR"

    async with session_maker() as db:
        stored = (await db.execute(select(Payment).where(Payment.order_id == payload["order_id"]))).scalar_one()
    assert stored.status == "pending"
    assert stored.credits == 30
    assert stored.gateway_order_id == "98765"


@pytest.mark.asyncio
async def test_confirm_reconciles_only_paid_gateway_orders(payments_env):
    client, session_maker = payments_env
    paid_order = await _seed_order(session_maker)
    gateway_status = {"value": "ACTIVE"}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"order_id": request.url.path.rsplit("/", 1)[-1], "order_status": gateway_status["value"]})

    transport = httpx.MockTransport(handler)
    with patch.object(settings, "CASHFREE_APP_ID", "app_live_id"), patch.object(
        settings, "CASHFREE_SECRET_KEY", "secret_live_key"
    ), patch("services.payments.CashfreeClient", lambda: CashfreeClient(transport=transport)):
        pending = await client.post("/payments/confirm", json={"order_id": paid_order}, headers=TEST_AUTH_HEADER)
        assert pending.status_code == 200
        assert pending.json()["status"] == "pending"
        assert await _state(session_maker, paid_order) == ("pending", 0)

        gateway_status["value"] = "PAID"
        paid = await client.post("/payments/confirm", json={"order_id": paid_order}, headers=TEST_AUTH_HEADER)
        assert paid.status_code == 200
        assert paid.json()["credited"] == 12

        again = await client.post("/payments/confirm", json={"order_id": paid_order}, headers=TEST_AUTH_HEADER)
        assert again.json()["already_processed"] is True

    assert await _state(session_maker, paid_order) == ("completed", 12)


@pytest.mark.asyncio
async def test_confirm_hides_other_users_orders(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker)

    response = await client.post("/payments/confirm", json={"order_id": order_id}, headers=OTHER_AUTH_HEADER)
    assert response.status_code == 404
    assert await _state(session_maker, order_id) == ("pending", 0)


@pytest.mark.asyncio
async def test_confirm_without_gateway_is_503(payments_env):
    client, session_maker = payments_env
    order_id = await _seed_order(session_maker)

    response = await client.post("/payments/confirm", json={"order_id": order_id}, headers=TEST_AUTH_HEADER)
    assert response.status_code == 503
    assert await _state(session_maker, order_id) == ("pending", 0)
