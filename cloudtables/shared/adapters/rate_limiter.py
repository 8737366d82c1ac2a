"""
AWS Rate Budgets

Advisory backpressure for provider calls, keyed by (service, action):
- budgets come from Settings.RATE_LIMITS ("service:action", then "service",
  then "default")
- one token bucket per pair, shared by every concurrent scan in the process
- FIFO admission: waiters queue on the bucket's asyncio.Lock in arrival order

Provider-side throttling is still handled by the error classifier's retries.
"""

import time
import asyncio
from threading import Lock
from typing import Optional
import structlog

from cloudtables.shared.core.async_utils import CancelToken
from cloudtables.shared.core.config import get_settings

logger = structlog.get_logger()


class RateLimiter:
    """
    Token bucket rate limiter for one (service, action) pair.

    Burst capacity equals the per-second rate, so a fresh bucket admits
    `rate` calls immediately and then one call every 1/rate seconds.
    """

    def __init__(self, rate_per_second: float, name: str = "default"):
        if rate_per_second <= 0:
            raise ValueError("rate_per_second must be > 0")
        self.name = name
        self.rate = rate_per_second
        self.capacity = rate_per_second
        self.tokens = rate_per_second
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = max(0.0, now - self.last_update)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_update = now

    async def acquire(self, cancel: Optional[CancelToken] = None) -> float:
        """
        Wait until a token is available and take it.

        Returns the number of seconds spent waiting. The lock is held while
        sleeping so later callers cannot overtake earlier ones.
        """
        waited = 0.0
        async with self._lock:
            self._refill()
            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                logger.debug(
                    "rate_limit_waiting",
                    budget=self.name,
                    wait_seconds=round(wait_time, 3),
                )
                if cancel is not None:
                    await cancel.sleep(wait_time)
                else:
                    await asyncio.sleep(wait_time)
                waited = wait_time
                self._refill()
            self.tokens = max(0.0, self.tokens - 1)
        return waited


_budgets: dict[tuple[str, str], RateLimiter] = {}
_budgets_lock = Lock()


def _configured_rate(service: str, action: str) -> float:
    limits = get_settings().RATE_LIMITS
    for key in (f"{service}:{action}", service, "default"):
        if key in limits:
            return limits[key]
    return limits["default"]


def get_rate_budget(service: str, action: str = "*") -> RateLimiter:
    """Get or create the process-wide limiter for a (service, action) pair."""
    key = (service.lower(), action)
    with _budgets_lock:
        limiter = _budgets.get(key)
        if limiter is None:
            rate = _configured_rate(key[0], action)
            limiter = RateLimiter(rate_per_second=rate, name=f"{key[0]}:{action}")
            _budgets[key] = limiter
            logger.debug("rate_budget_created", budget=limiter.name, rate=rate)
        return limiter


def set_rate_budget(service: str, action: str, rate_per_second: float) -> RateLimiter:
    """Replace the limiter for a pair, e.g. when a connection overrides the default."""
    key = (service.lower(), action)
    limiter = RateLimiter(rate_per_second=rate_per_second, name=f"{key[0]}:{action}")
    with _budgets_lock:
        _budgets[key] = limiter
    return limiter


def reset_rate_budgets() -> None:
    """Drop every budget. Called on shutdown and between tests."""
    with _budgets_lock:
        _budgets.clear()


async def wait_for_rate_budget(
    service: str, action: str = "*", cancel: Optional[CancelToken] = None
) -> float:
    """
    Block until the (service, action) budget admits one more call.

    Usage:
        await wait_for_rate_budget("apigateway", "GetRoutes", cancel=token)
    """
    return await get_rate_budget(service, action).acquire(cancel)
