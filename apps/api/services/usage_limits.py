"""Bounded usage counters: anonymous daily free allowance and request quotas."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

ANONYMOUS_BUCKET = "anonymous"
DAILY_KEY_TTL_SECONDS = 2 * 24 * 3600


def _local_today() -> str:
    return date.today().isoformat()


@dataclass(frozen=True)
class UsageDecision:
    allowed: bool
    date: str
    count: int
    cap: int

    @property
    def remaining(self) -> int:
        return max(0, self.cap - self.count)

    def as_dict(self) -> Dict[str, object]:
        return {
            "remaining_free": self.remaining,
            "used": self.count,
            "max_daily": self.cap,
            "date": self.date,
            "is_limit_reached": self.count >= self.cap,
        }


class DailyUsageCounter(ABC):
    """Check-and-increment counter that resets when the calendar date changes."""

    cap: int

    @abstractmethod
    async def consume(self, bucket: str) -> UsageDecision:
        """Count one use if the bucket is under its cap for today."""
        raise NotImplementedError

    @abstractmethod
    async def peek(self, bucket: str) -> UsageDecision:
        raise NotImplementedError


class LocalDailyUsageCounter(DailyUsageCounter):
    """In-process counter. Not shared across workers or instances."""

    def __init__(self, cap: int, *, today: Callable[[], str] = _local_today) -> None:
        self.cap = max(int(cap), 0)
        self._today = today
        self._counts: Dict[str, Tuple[str, int]] = {}
        self._counts_day: Optional[str] = None
        self._lock = asyncio.Lock()

    def _current(self, bucket: str) -> Tuple[str, int]:
        today = self._today()
        if today != self._counts_day:
            # Drop buckets from earlier days.
            self._counts = {key: value for key, value in self._counts.items() if value[0] == today}
            self._counts_day = today
        day, count = self._counts.get(bucket, (today, 0))
        if day != today:
            return today, 0
        return day, count

    async def consume(self, bucket: str) -> UsageDecision:
        async with self._lock:
            day, count = self._current(bucket)
            if count >= self.cap:
                self._counts[bucket] = (day, count)
                return UsageDecision(allowed=False, date=day, count=count, cap=self.cap)
            count += 1
            self._counts[bucket] = (day, count)
            return UsageDecision(allowed=True, date=day, count=count, cap=self.cap)

    async def peek(self, bucket: str) -> UsageDecision:
        async with self._lock:
            day, count = self._current(bucket)
            return UsageDecision(allowed=count < self.cap, date=day, count=count, cap=self.cap)

    def clear(self) -> None:
        self._counts.clear()
        self._counts_day = None


class RedisDailyUsageCounter(DailyUsageCounter):
    """Counter shared by every instance pointing at the same Redis."""

    def __init__(
        self,
        cap: int,
        *,
        redis_url: Optional[str] = None,
        today: Callable[[], str] = _local_today,
    ) -> None:
        self.cap = max(int(cap), 0)
        self._redis_url = redis_url or settings.REDIS_URL
        self._today = today

    def _key(self, bucket: str, day: str) -> str:
        return f"studio:free:{bucket}:{day}"

    async def consume(self, bucket: str) -> UsageDecision:
        day = self._today()
        key = self._key(bucket, day)
        client = redis.from_url(self._redis_url, decode_responses=True)
        try:
            count = int(await client.incr(key))
            if count == 1:
                await client.expire(key, DAILY_KEY_TTL_SECONDS)
            if count > self.cap:
                await client.decr(key)
                return UsageDecision(allowed=False, date=day, count=self.cap, cap=self.cap)
        finally:
            await client.aclose()
        return UsageDecision(allowed=True, date=day, count=count, cap=self.cap)

    async def peek(self, bucket: str) -> UsageDecision:
        day = self._today()
        client = redis.from_url(self._redis_url, decode_responses=True)
        try:
            raw = await client.get(self._key(bucket, day))
        finally:
            await client.aclose()
        count = int(raw or 0)
        return UsageDecision(allowed=count < self.cap, date=day, count=count, cap=self.cap)


_daily_counter: Optional[DailyUsageCounter] = None


def get_daily_usage_counter() -> DailyUsageCounter:
    """FastAPI dependency returning the configured anonymous free-usage counter."""
    global _daily_counter
    if _daily_counter is None:
        backend = (settings.FREE_USAGE_BACKEND or "local").strip().lower()
        if backend == "redis":
            _daily_counter = RedisDailyUsageCounter(settings.FREE_DAILY_VIDEO_LIMIT)
        else:
            _daily_counter = LocalDailyUsageCounter(settings.FREE_DAILY_VIDEO_LIMIT)
        logger.info("Free usage counter backend=%s cap=%s", backend, settings.FREE_DAILY_VIDEO_LIMIT)
    return _daily_counter


def reset_daily_usage_counter() -> None:
    global _daily_counter
    _daily_counter = None


# Fixed-window request quotas (Redis with in-process fallback).

_window_counters: Dict[str, Tuple[int, float]] = {}
_window_lock = asyncio.Lock()
WINDOW_PRUNE_INTERVAL_SECONDS = 60.0
_next_window_prune = 0.0


def _prune_expired_windows(now: float) -> None:
    global _next_window_prune
    if now < _next_window_prune:
        return
    for key in [key for key, (_, reset_at) in _window_counters.items() if reset_at <= now]:
        del _window_counters[key]
    _next_window_prune = now + WINDOW_PRUNE_INTERVAL_SECONDS


async def _consume_local_window(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _window_lock:
        _prune_expired_windows(now)
        count, reset_at = _window_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _window_counters[key] = (count, reset_at)
        return count <= limit


async def consume_window_quota(key: str, limit: int, window_seconds: int) -> bool:
    """Count one request against ``key`` and report whether it is within ``limit``."""
    try:
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        try:
            current = await client.incr(key)
            if current == 1:
                await client.expire(key, window_seconds)
        finally:
            await client.aclose()
        return current <= limit
    except Exception:
        return await _consume_local_window(key, limit, window_seconds)


def clear_window_counters() -> None:
    global _next_window_prune
    _window_counters.clear()
    _next_window_prune = 0.0
