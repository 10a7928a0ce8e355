"""Sliding window throttling for OTP-sending and OTP-consuming endpoints."""

from __future__ import annotations

import logging
import time
from collections import deque
from threading import Lock
from typing import Callable, Deque, DefaultDict, Protocol

import redis

from ..config import Settings
from .redis_rate_limiter import RedisSlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool:
        ...


class SlidingWindowRateLimiter:
    """Thread-safe in-process sliding window rate limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()
        self._next_sweep = float("-inf")

    def allow(self, key: str) -> bool:
        """Return ``True`` when the request is within the configured rate limit."""
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            queue = self._events[key]
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                return False
            queue.append(now)
            return True

    def _sweep(self, now: float) -> None:
        """Forget keys with no request inside the window; runs at most once per window."""
        idle = [key for key, queue in self._events.items() if not queue or now - queue[-1] > self._window]
        for key in idle:
            del self._events[key]
        self._next_sweep = now + self._window


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured rate limiter backend, preferring Redis when available."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = redis.from_url(settings.redis_url)
            client.ping()
            logger.info("rate limiter configured for redis backend")
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except (redis.RedisError, ValueError) as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
