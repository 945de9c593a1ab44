from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base, get_db
from main import app
from models.user import User
from services.errors import NetworkTimeout, OperationTimeout, ProviderTierFailed
from services.providers import OperationStatus, get_veo_provider
from services.providers.veo import VeoVideoProvider, backoff_delay, wait_for_operation
from services.samples import DEMO_FALLBACK_VIDEO
from services.session_token import create_session_token


TEST_USER_ID = "veo-operations-user"
TEST_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(TEST_USER_ID)['token']}"}
OPERATION_NAME = "models/veo-3.1-generate-preview/operations/op-123"


def _operation_transport(status_body=None, *, submit_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            if submit_status != 200:
                return httpx.Response(submit_status, text="quota exceeded")
            return httpx.Response(200, json={"name": OPERATION_NAME})
        if status_body is None:
            raise httpx.ConnectTimeout("status check timed out", request=request)
        return httpx.Response(200, json=status_body)

    return httpx.MockTransport(handler)


def _unreachable_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


def test_backoff_grows_geometrically_and_caps():
    assert backoff_delay(1) == 10
    assert backoff_delay(2) == 15
    assert backoff_delay(3) == 22.5
    assert backoff_delay(4) == 30
    assert backoff_delay(20) == 30
    assert backoff_delay(0) == 10


@pytest.mark.asyncio
async def test_poll_maps_operation_states():
    cases = [
        ({"done": False, "metadata": {"progress": 40}}, "processing", None),
        (
            {"done": True, "response": {"generateVideoResponse": {"generatedSamples": [{"video": {"uri": "https://veo.test/final.mp4"}}]}}},
            "completed",
            "https://veo.test/final.mp4",
        ),
        (
            {"done": True, "response": {"generateVideoResponse": {"raiMediaFilteredReasons": ["unsafe content"]}}},
            "rejected",
            None,
        ),
        ({"done": True, "response": {}}, "completed", DEMO_FALLBACK_VIDEO),
    ]
    with patch.object(settings, "VEO_API_KEY", "AIza-live"):
        for body, state, video_url in cases:
            status = await VeoVideoProvider(transport=_operation_transport(body)).poll_operation(OPERATION_NAME)
            assert status.state == state
            assert status.video_url == video_url

        rejected = await VeoVideoProvider(
            transport=_operation_transport(cases[2][0])
        ).poll_operation(OPERATION_NAME)
        assert rejected.reason == "unsafe content"

        demo = await VeoVideoProvider(transport=_operation_transport(cases[3][0])).poll_operation(OPERATION_NAME)
        assert demo.metadata["is_demo"] is True


@pytest.mark.asyncio
async def test_poll_timeout_raises_network_timeout():
    with patch.object(settings, "VEO_API_KEY", "AIza-live"):
        with pytest.raises(NetworkTimeout):
            await VeoVideoProvider(transport=_operation_transport(None)).poll_operation(OPERATION_NAME)


@pytest.mark.asyncio
async def test_poll_connection_error_and_odd_payload_are_tier_failures():
    with patch.object(settings, "VEO_API_KEY", "AIza-live"):
        with pytest.raises(ProviderTierFailed):
            await VeoVideoProvider(transport=_unreachable_transport()).poll_operation(OPERATION_NAME)
        with pytest.raises(ProviderTierFailed):
            await VeoVideoProvider(transport=_operation_transport(["not", "an", "object"])).poll_operation(
                OPERATION_NAME
            )


class ScriptedVeo:
    def __init__(self, statuses):
        self.statuses = list(statuses)
        self.calls = 0

    async def poll_operation(self, name):
        self.calls += 1
        item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.mark.asyncio
async def test_wait_for_operation_backs_off_until_done():
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    provider = ScriptedVeo(
        [
            OperationStatus(state="processing"),
            NetworkTimeout("blip"),
            OperationStatus(state="completed", video_url="https://veo.test/done.mp4"),
        ]
    )
    status = await wait_for_operation(provider, OPERATION_NAME, max_attempts=5, sleep=fake_sleep)
    assert status.video_url == "https://veo.test/done.mp4"
    assert delays == [10, 15]


@pytest.mark.asyncio
async def test_wait_for_operation_gives_up_after_attempt_budget():
    async def fake_sleep(seconds):
        return None

    provider = ScriptedVeo([OperationStatus(state="processing")] * 3)
    with pytest.raises(OperationTimeout):
        await wait_for_operation(provider, OPERATION_NAME, max_attempts=3, sleep=fake_sleep)
    assert provider.calls == 3


@pytest_asyncio.fixture
async def operations_client(tmp_path):
    db_path = tmp_path / "video_operations.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    holder = {"provider": VeoVideoProvider(transport=_operation_transport({"done": False}))}
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_veo_provider] = lambda: holder["provider"]
    with patch.object(settings, "VEO_API_KEY", "AIza-live"), patch.object(settings, "SIGNUP_FREE_CREDITS", 1):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client, session_maker, holder

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_veo_provider, None)
    await engine.dispose()


async def _balance(client) -> int:
    response = await client.get("/credits/balance", headers=TEST_AUTH_HEADER)
    return response.json()["credits_remaining"]


@pytest.mark.asyncio
async def test_submit_operation_charges_once_and_logs_pending_creation(operations_client):
    client, _, _ = operations_client

    response = await client.post(
        "/generate/video/operations",
        json={"prompt": "a glacier calving", "aspect_ratio": "16:9"},
        headers=TEST_AUTH_HEADER,
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["operation_id"] == OPERATION_NAME
    assert payload["status"] == "processing"
    assert payload["credits_remaining"] == 0

    creations = (await client.get("/credits/creations", headers=TEST_AUTH_HEADER)).json()["creations"]
    assert len(creations) == 1
    assert creations[0]["result_url"] is None
    assert creations[0]["metadata"]["operation"] == OPERATION_NAME


@pytest.mark.asyncio
async def test_submit_failure_refunds_credit(operations_client):
    client, _, holder = operations_client
    holder["provider"] = VeoVideoProvider(transport=_operation_transport({"done": False}, submit_status=429))

    response = await client.post(
        "/generate/video/operations",
        json={"prompt": "a glacier calving"},
        headers=TEST_AUTH_HEADER,
    )
    assert response.status_code == 502
    assert await _balance(client) == 1


@pytest.mark.asyncio
async def test_submit_without_credit_is_402(operations_client):
    client, session_maker, _ = operations_client
    await client.get("/credits/balance", headers=TEST_AUTH_HEADER)
    async with session_maker() as db:
        await db.execute(update(User).where(User.id == TEST_USER_ID).values(credits_remaining=0))
        await db.commit()

    response = await client.post(
        "/generate/video/operations",
        json={"prompt": "a glacier calving"},
        headers=TEST_AUTH_HEADER,
    )
    assert response.status_code == 402


@pytest.mark.asyncio
async def test_status_endpoint_reports_processing_with_retry_hint(operations_client):
    client, _, _ = operations_client
    response = await client.get(f"/generate/video/operations/{OPERATION_NAME}?attempt=3", headers=TEST_AUTH_HEADER)
    assert response.status_code == 200
    assert response.json()["status"] == "processing"
    assert response.json()["retry_after_seconds"] == 22.5


@pytest.mark.asyncio
async def test_status_endpoint_maps_rejection_and_timeout(operations_client):
    client, _, holder = operations_client

    holder["provider"] = VeoVideoProvider(
        transport=_operation_transport(
            {"done": True, "response": {"generateVideoResponse": {"raiMediaFilteredReasons": ["blocked"]}}}
        )
    )
    rejected = await client.get(f"/generate/video/operations/{OPERATION_NAME}", headers=TEST_AUTH_HEADER)
    assert rejected.status_code == 400
    assert rejected.json()["status"] == "failed"
    assert rejected.json()["reason"] == "blocked"

    holder["provider"] = VeoVideoProvider(transport=_operation_transport(None))
    timed_out = await client.get(f"/generate/video/operations/{OPERATION_NAME}", headers=TEST_AUTH_HEADER)
    assert timed_out.status_code == 408
    assert timed_out.json()["status"] == "processing"


@pytest.mark.asyncio
async def test_status_endpoint_returns_completed_video(operations_client):
    client, _, holder = operations_client
    holder["provider"] = VeoVideoProvider(
        transport=_operation_transport({"done": True, "response": {"videoUrl": "https://veo.test/ready.mp4"}})
    )
    response = await client.get(f"/generate/video/operations/{OPERATION_NAME}", headers=TEST_AUTH_HEADER)
    assert response.status_code == 200
    assert response.json() == {"status": "completed", "video_url": "https://veo.test/ready.mp4", "metadata": {}}


@pytest.mark.asyncio
async def test_wait_for_operation_raises_last_failure_when_budget_ends_on_error():
    async def fake_sleep(seconds):
        return None

    provider = ScriptedVeo([OperationStatus(state="processing"), ProviderTierFailed("connection refused")])
    with pytest.raises(ProviderTierFailed):
        await wait_for_operation(provider, OPERATION_NAME, max_attempts=2, sleep=fake_sleep)

    recovered = ScriptedVeo(
        [
            ProviderTierFailed("connection refused"),
            OperationStatus(state="completed", video_url="https://veo.test/late.mp4"),
        ]
    )
    status = await wait_for_operation(recovered, OPERATION_NAME, max_attempts=3, sleep=fake_sleep)
    assert status.video_url == "https://veo.test/late.mp4"
    assert recovered.calls == 2


@pytest.mark.asyncio
async def test_status_endpoint_reports_unreachable_provider_as_retryable(operations_client):
    client, _, holder = operations_client
    holder["provider"] = VeoVideoProvider(transport=_unreachable_transport())

    direct = await client.get(f"/generate/video/operations/{OPERATION_NAME}?attempt=2", headers=TEST_AUTH_HEADER)
    assert direct.status_code == 503
    assert direct.json()["status"] == "processing"
    assert direct.json()["retry_after_seconds"] == 15

    waited = await client.get(
        f"/generate/video/operations/{OPERATION_NAME}?wait_attempts=1", headers=TEST_AUTH_HEADER
    )
    assert waited.status_code == 503
    assert waited.json()["status"] == "processing"
