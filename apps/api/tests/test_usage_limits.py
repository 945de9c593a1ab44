import pytest

from services import usage_limits
from services.usage_limits import LocalDailyUsageCounter, consume_window_quota


@pytest.mark.asyncio
async def test_daily_counter_caps_per_bucket_and_resets_on_new_date():
    today = {"value": "2026-10-18"}
    counter = LocalDailyUsageCounter(2, today=lambda: today["value"])

    first = await counter.consume("anonymous")
    second = await counter.consume("anonymous")
    third = await counter.consume("anonymous")
    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert third.count == 2
    assert third.remaining == 0

    other = await counter.consume("client:10.0.0.9")
    assert other.allowed and other.count == 1

    today["value"] = "2026-10-19"
    fresh = await counter.consume("anonymous")
    assert fresh.allowed
    assert fresh.count == 1
    assert fresh.date == "2026-10-19"


@pytest.mark.asyncio
async def test_peek_reports_without_counting():
    counter = LocalDailyUsageCounter(1, today=lambda: "2026-10-18")

    before = await counter.peek("anonymous")
    assert before.as_dict() == {
        "remaining_free": 1,
        "used": 0,
        "max_daily": 1,
        "date": "2026-10-18",
        "is_limit_reached": False,
    }
    assert (await counter.peek("anonymous")).count == 0

    await counter.consume("anonymous")
    after = await counter.peek("anonymous")
    assert after.as_dict()["is_limit_reached"] is True


@pytest.mark.asyncio
async def test_zero_cap_rejects_everything():
    counter = LocalDailyUsageCounter(0)
    decision = await counter.consume("anonymous")
    assert not decision.allowed


@pytest.mark.asyncio
async def test_window_quota_falls_back_to_local_counts(monkeypatch):
    from config import settings

    monkeypatch.setattr(settings, "REDIS_URL", "redis://127.0.0.1:1")
    results = [await consume_window_quota("studio:rate:test:client", 2, 60) for _ in range(3)]
    assert results == [True, True, False]


@pytest.mark.asyncio
async def test_daily_counter_forgets_buckets_from_past_days():
    today = {"value": "2026-10-18"}
    counter = LocalDailyUsageCounter(1, today=lambda: today["value"])
    for client in range(5):
        await counter.consume(f"client:10.0.0.{client}")
    assert len(counter._counts) == 5

    today["value"] = "2026-10-19"
    await counter.consume("client:10.0.0.99")
    assert list(counter._counts) == ["client:10.0.0.99"]


@pytest.mark.asyncio
async def test_local_window_counters_drop_expired_keys(monkeypatch):
    from config import settings

    clock = {"now": 1_000.0}
    monkeypatch.setattr(settings, "REDIS_URL", "redis://127.0.0.1:1")
    monkeypatch.setattr(usage_limits.time, "time", lambda: clock["now"])

    for client in range(3):
        await consume_window_quota(f"studio:rate:test:{client}", 5, 60)
    assert len(usage_limits._window_counters) == 3

    clock["now"] += 120
    await consume_window_quota("studio:rate:test:late", 5, 60)
    assert list(usage_limits._window_counters) == ["studio:rate:test:late"]
