"""Tests for the in-memory and Redis-backed sliding window rate limiters."""

from __future__ import annotations

import fakeredis
import pytest

from auth_service.config import Settings
from auth_service.security.rate_limiter import SlidingWindowRateLimiter, build_rate_limiter
from auth_service.security.redis_rate_limiter import RedisSlidingWindowRateLimiter


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_memory_limiter_blocks_excess_per_key():
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=FakeClock())
    assert limiter.allow("login:a@x.com")
    assert limiter.allow("login:a@x.com")
    assert not limiter.allow("login:a@x.com")
    assert limiter.allow("login:b@x.com")


def test_memory_limiter_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
    assert limiter.allow("resend:a@x.com")
    clock.now += 30
    assert not limiter.allow("resend:a@x.com")
    clock.now += 31
    assert limiter.allow("resend:a@x.com")


def test_redis_rate_limiter_blocks_excess(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=2, window_seconds=1, key_prefix="test", clock=FakeClock()
    )
    key = "login:a@x.com"
    assert limiter.allow(key)
    assert limiter.allow(key)
    assert not limiter.allow(key)


def test_redis_rate_limiter_expires_entries(redis_client):
    clock = FakeClock()
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=1, key_prefix="test", clock=clock
    )
    key = "login:a@x.com"
    assert limiter.allow(key)
    assert not limiter.allow(key)
    clock.now += 1.1
    assert limiter.allow(key)


def test_build_rate_limiter_falls_back_to_memory_when_redis_unreachable():
    settings = Settings(rate_limit_backend="redis", redis_url="redis://127.0.0.1:1/0")
    assert isinstance(build_rate_limiter(settings), SlidingWindowRateLimiter)


def test_build_rate_limiter_defaults_to_memory():
    assert isinstance(build_rate_limiter(Settings(rate_limit_backend="memory")), SlidingWindowRateLimiter)


def test_memory_limiter_forgets_idle_keys():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=60, clock=clock)
    for index in range(1000):
        assert limiter.allow(f"register:user{index}@example.com")

    clock.now += 3600
    assert limiter.allow("register:user0@example.com")

    assert list(limiter._events) == ["register:user0@example.com"]


def test_memory_limiter_sweep_keeps_keys_inside_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
    assert limiter.allow("login:a@x.com")

    clock.now += 61
    assert limiter.allow("login:b@x.com")
    clock.now += 30
    assert not limiter.allow("login:b@x.com")
    assert "login:a@x.com" not in limiter._events
    assert "login:b@x.com" in limiter._events
