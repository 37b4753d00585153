"""
Fixed-window request throttling.

Each route group is bound to a named budget (max requests per window). The
counter key is `budget:actor:window_start`, so rollover needs no reset: the
next window simply starts a new key at zero. Counters live behind a tiny
backend interface (`increment(key, window) -> count`) with an in-process
implementation and a Redis one for multi-instance deployments.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from functools import wraps
from typing import Callable, Dict, Optional, Protocol

from flask import current_app, g, request

from utils.exceptions import RateLimited

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitBudget:
    name: str
    max_requests: int
    window: int  # seconds
    message: str


DEFAULT_BUDGETS = {
    # destructive operations (DELETE)
    "strict": RateLimitBudget(
        "strict", 10, 60, "Destructive operation limit reached. Wait a minute before trying again."
    ),
    # resource creation
    "moderate": RateLimitBudget(
        "moderate", 30, 60, "Resource creation limit reached. Wait a minute before trying again."
    ),
    # heavy processing (reports, exports, batch jobs)
    "heavy": RateLimitBudget(
        "heavy", 5, 60, "Heavy operation limit reached. Wait a minute before processing again."
    ),
    # login, register, refresh, password reset
    "auth": RateLimitBudget(
        "auth", 20, 60, "Too many authentication attempts. Try again in a few minutes."
    ),
    # every request, per IP
    "global": RateLimitBudget(
        "global", 100, 60, "Too many requests. Try again in a few minutes."
    ),
}


class CounterBackend(Protocol):
    def increment(self, key: str, window: int) -> int: ...


class InMemoryCounterBackend:
    """Process-local counters guarded by a lock. Stale windows are purged lazily."""

    def __init__(self, cleanup_interval: int = 300, clock: Callable[[], float] = time.time):
        self._counters: Dict[str, tuple[int, float]] = {}  # key -> (count, expires_at)
        self._lock = threading.Lock()
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()

    def increment(self, key: str, window: int) -> int:
        now = self._clock()
        with self._lock:
            self._cleanup(now)
            count, expires_at = self._counters.get(key, (0, now + window))
            if expires_at <= now:
                count, expires_at = 0, now + window
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < self._cleanup_interval:
            return
        stale = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in stale:
            del self._counters[key]
        self._last_cleanup = now

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()


class RedisCounterBackend:
    """Atomic INCR + EXPIRE in one pipeline; shared by every app instance."""

    def __init__(self, client, prefix: str = "ratelimit:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterBackend":
        import redis

        return cls(redis.Redis.from_url(url))

    def increment(self, key: str, window: int) -> int:
        pipe = self.client.pipeline()
        pipe.incr(self.prefix + key)
        # the key already embeds the window start, one spare second covers clock skew
        pipe.expire(self.prefix + key, window + 1)
        count, _ = pipe.execute()
        return int(count)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimiter:
    def __init__(self, backend: CounterBackend, clock: Callable[[], float] = time.time):
        self.backend = backend
        self._clock = clock

    def hit(self, budget: RateLimitBudget, actor: str) -> RateLimitResult:
        now = self._clock()
        window_start = int(now // budget.window) * budget.window
        count = self.backend.increment(f"{budget.name}:{actor}:{window_start}", budget.window)
        retry_after = max(1, math.ceil(window_start + budget.window - now))
        # count is post-increment: the request is allowed while the pre-increment
        # count was still below the budget
        return RateLimitResult(
            allowed=count <= budget.max_requests,
            count=count,
            limit=budget.max_requests,
            retry_after=retry_after,
        )

    def check(self, budget: RateLimitBudget, actor: str) -> RateLimitResult:
        result = self.hit(budget, actor)
        if not result.allowed:
            logger.warning(
                "[RATE_LIMIT] budget=%s | actor=%s | count=%d | limit=%d",
                budget.name, actor, result.count, result.limit,
            )
            raise RateLimited(budget.message, retry_after=result.retry_after)
        return result


def build_budgets(config) -> Dict[str, RateLimitBudget]:
    """Default budgets with optional RATE_LIMIT_<NAME> = "max/window" overrides."""
    budgets = dict(DEFAULT_BUDGETS)
    for name, budget in DEFAULT_BUDGETS.items():
        override = config.get(f"RATE_LIMIT_{name.upper()}")
        if not override:
            continue
        max_requests, _, window = str(override).partition("/")
        budgets[name] = RateLimitBudget(
            name, int(max_requests), int(window or budget.window), budget.message
        )
    return budgets


def build_backend(config) -> CounterBackend:
    url = config.get("RATE_LIMIT_STORAGE_URL")
    if url:
        logger.info("Rate limit counters stored in Redis")
        return RedisCounterBackend.from_url(url)
    return InMemoryCounterBackend()


def actor_key(ip: Optional[str], user_id: Optional[str] = None) -> str:
    """Client IP, plus the identity on authenticated routes."""
    ip = ip or "unknown"
    return f"{ip}-{user_id}" if user_id else ip


def enforce(budget_name: str, user_id: Optional[str] = None) -> Optional[RateLimitResult]:
    """Count the current request against a budget; raises RateLimited when exhausted."""
    if not current_app.config.get("RATE_LIMIT_ENABLED", True):
        return None
    services = current_app.extensions["auth"]
    budget = services.budgets[budget_name]
    return services.limiter.check(budget, actor_key(request.remote_addr, user_id))


def rate_limit(budget_name: str):
    """
    Bind a view to a budget. Put it below the gate decorators so the
    authenticated identity is part of the key.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            enforce(budget_name, g.get("current_user_id"))
            return fn(*args, **kwargs)

        return wrapper

    return decorator
