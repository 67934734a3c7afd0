"""Per-client-IP sliding window rate limiting for the HTTP layer.

Two backends share one algorithm: keep the timestamps of accepted requests
inside the window, reject once ``max_requests`` are present, and report how
long until the oldest one leaves the window.

- MemoryWindowBackend: in-process, the default (the service is single-instance)
- RedisWindowBackend: sorted sets in Redis, for deployments that want the
  limit shared across restarts or processes
"""

import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Protocol

from fastapi import Request
from redis import Redis

from .errors import RateLimitExceededError
from .observability.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0


class WindowBackend(Protocol):
    def hit(self, key: str, now: float, window: float, max_requests: int) -> RateLimitDecision: ...

    def purge(self, now: float, window: float) -> int: ...


def _retry_after(oldest: float, now: float, window: float) -> int:
    return max(1, math.ceil(oldest + window - now))


class MemoryWindowBackend:
    def __init__(self):
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, key: str, now: float, window: float, max_requests: int) -> RateLimitDecision:
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - window:
                hits.popleft()
            if len(hits) >= max_requests:
                return RateLimitDecision(False, _retry_after(hits[0], now, window))
            hits.append(now)
            return RateLimitDecision(True)

    def purge(self, now: float, window: float) -> int:
        """Drop keys whose every hit has left the window."""
        with self._lock:
            stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - window]
            for key in stale:
                del self._hits[key]
        return len(stale)


class RedisWindowBackend:
    def __init__(self, client: Redis):
        self.redis = client

    def hit(self, key: str, now: float, window: float, max_requests: int) -> RateLimitDecision:
        redis_key = f"rate_limit:{key}"

        # Remove old entries outside window
        self.redis.zremrangebyscore(redis_key, 0, now - window)

        if self.redis.zcard(redis_key) >= max_requests:
            oldest = self.redis.zrange(redis_key, 0, 0, withscores=True)
            oldest_score = oldest[0][1] if oldest else now
            return RateLimitDecision(False, _retry_after(oldest_score, now, window))

        self.redis.zadd(redis_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        self.redis.expire(redis_key, int(math.ceil(window)))
        return RateLimitDecision(True)

    def purge(self, now: float, window: float) -> int:
        # Keys carry their own TTL
        return 0


def get_redis_client(url: Optional[str]) -> Optional[Redis]:
    """Get Redis client for rate limiting.

    Returns None if no URL is configured or Redis is not reachable, allowing
    graceful degradation to the in-process backend.
    """
    if not url:
        return None
    try:
        client = Redis.from_url(url, decode_responses=True)
        client.ping()
        return client
    except Exception as e:
        logger.warning(f"Redis unavailable for rate limiting ({e}), using in-process backend")
        return None


def create_backend(redis_url: Optional[str] = None) -> WindowBackend:
    client = get_redis_client(redis_url)
    if client is not None:
        return RedisWindowBackend(client)
    return MemoryWindowBackend()


def client_ip(request: Request) -> str:
    """Client IP, honouring the first X-Forwarded-For hop set by a proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


class SlidingWindowRateLimiter:
    """Named limiter: at most ``max_requests`` per ``window_seconds`` per client IP."""

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
        backend: Optional[WindowBackend] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.backend = backend or MemoryWindowBackend()
        self._clock = clock

    def hit(self, identifier: str) -> RateLimitDecision:
        return self.backend.hit(
            f"{self.name}:{identifier}",
            self._clock(),
            self.window_seconds,
            self.max_requests,
        )

    def check(self, request: Request) -> None:
        """Record a request and raise if the client is over the limit.

        Raises:
            RateLimitExceededError: with the seconds until a slot frees up
        """
        ip = client_ip(request)
        decision = self.hit(ip)
        if not decision.allowed:
            logger.warning(f"Rate limit '{self.name}' exceeded for {ip}")
            raise RateLimitExceededError(decision.retry_after)

    def purge(self) -> int:
        return self.backend.purge(self._clock(), self.window_seconds)
