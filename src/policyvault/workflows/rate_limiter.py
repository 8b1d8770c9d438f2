"""Per-domain politeness: minimum spacing, burst windows and 429 backoff.

State lives in an injectable :class:`RateStateStore` instead of a module
global, so tests can drive the limiter with a fake clock and several
limiters (or processes, given a shared store) can coordinate.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Dict, Optional, Protocol

from .models import DomainRateState
from .policy_config import (
    BURST_LIMIT,
    BURST_WINDOW_SECONDS,
    MAX_BACKOFF_SECONDS,
    MAX_JITTER_SECONDS,
    MIN_INTERVAL_SECONDS,
    RATE_LIMIT_COOLDOWN_SECONDS,
    RETRY_AFTER_DEFAULT_SECONDS,
    RETRY_AFTER_MAX_SECONDS,
    RETRY_AFTER_MIN_SECONDS,
)
from .policy_utils import clean_domain, env_float, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class RateStateStore(Protocol):
    def get(self, domain: str) -> DomainRateState: ...

    def put(self, state: DomainRateState) -> None: ...


class InMemoryRateStateStore:
    """Process-local store; share one instance between limiters to share state."""

    def __init__(self) -> None:
        self._states: Dict[str, DomainRateState] = {}
        self._lock = threading.Lock()

    def get(self, domain: str) -> DomainRateState:
        with self._lock:
            state = self._states.get(domain)
            return state.copy() if state is not None else DomainRateState(domain=domain)

    def put(self, state: DomainRateState) -> None:
        with self._lock:
            self._states[state.domain] = state.copy()

    def domains(self) -> Dict[str, DomainRateState]:
        with self._lock:
            return {key: value.copy() for key, value in self._states.items()}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> float:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds.

    Missing or unparseable values fall back to 5s; results are clamped to [1s, 60s].
    """

    raw = (value or "").strip()
    if not raw:
        return RETRY_AFTER_DEFAULT_SECONDS
    try:
        seconds = float(raw)
    except ValueError:
        seconds = None
    if seconds is not None:
        if seconds < 0:
            return RETRY_AFTER_DEFAULT_SECONDS
        return _clamp(seconds, RETRY_AFTER_MIN_SECONDS, RETRY_AFTER_MAX_SECONDS)
    try:
        when = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return RETRY_AFTER_DEFAULT_SECONDS
    if when is None:
        return RETRY_AFTER_DEFAULT_SECONDS
    reference = now or utc_now()
    if when.tzinfo is None:
        when = when.replace(tzinfo=reference.tzinfo)
    delta = (when - reference).total_seconds()
    return _clamp(delta, RETRY_AFTER_MIN_SECONDS, RETRY_AFTER_MAX_SECONDS)


def compute_backoff(retry_after: float, attempt: int, cap: float = MAX_BACKOFF_SECONDS) -> float:
    """Exponential backoff seeded by Retry-After: ``min(retry_after * 2**attempt, cap)``."""

    return min(retry_after * (2 ** max(0, attempt)), cap)


class RateLimiter:
    """Async per-domain limiter; one lock per domain guards read-wait-write."""

    def __init__(
        self,
        *,
        min_interval: Optional[float] = None,
        max_jitter: Optional[float] = None,
        burst_limit: int = BURST_LIMIT,
        burst_window: float = BURST_WINDOW_SECONDS,
        cooldown_after_429: float = RATE_LIMIT_COOLDOWN_SECONDS,
        store: Optional[RateStateStore] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleeper] = None,
        jitter: Optional[Callable[[float, float], float]] = None,
    ) -> None:
        if min_interval is None:
            min_interval = env_float("POLICYVAULT_MIN_INTERVAL_MS", MIN_INTERVAL_SECONDS * 1000) / 1000.0
        if max_jitter is None:
            max_jitter = env_float("POLICYVAULT_MAX_JITTER_MS", MAX_JITTER_SECONDS * 1000) / 1000.0
        self.min_interval = max(0.0, min_interval)
        self.max_jitter = max(0.0, max_jitter)
        self.burst_limit = burst_limit
        self.burst_window = burst_window
        self.cooldown_after_429 = cooldown_after_429
        self.store: RateStateStore = store if store is not None else InMemoryRateStateStore()
        self._clock: Clock = clock or time.monotonic
        self._sleep: Sleeper = sleep or asyncio.sleep
        self._jitter = jitter or random.uniform
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, domain: str) -> asyncio.Lock:
        lock = self._locks.get(domain)
        if lock is None:
            lock = self._locks.setdefault(domain, asyncio.Lock())
        return lock

    def _required_wait(self, state: DomainRateState, now: float) -> float:
        wait = 0.0
        if state.backoff_until > now:
            wait = state.backoff_until - now
        if state.last_request_at is not None:
            spacing = self.min_interval
            if self.max_jitter > 0:
                spacing += self._jitter(0.0, self.max_jitter)
            wait = max(wait, state.last_request_at + spacing - now)
        if (
            self.burst_limit > 0
            and state.window_count >= self.burst_limit
            and now - state.window_started_at < self.burst_window
        ):
            wait = max(wait, state.window_started_at + self.burst_window - now)
        return max(0.0, wait)

    async def await_turn(self, domain: str) -> float:
        """Wait until ``domain`` may be contacted again, then record the request.

        Returns the number of seconds spent waiting.
        """

        key = clean_domain(domain) or domain
        async with self._lock_for(key):
            state = self.store.get(key)
            wait = self._required_wait(state, self._clock())
            if wait > 0:
                logger.debug("Rate limiter holding %s for %.2fs", key, wait)
                await self._sleep(wait)
            now = self._clock()
            if state.last_request_at is not None and now < state.last_request_at:
                now = state.last_request_at
            if now - state.window_started_at >= self.burst_window or state.window_count == 0:
                state.window_started_at = now
                state.window_count = 0
            state.window_count += 1
            state.last_request_at = now
            self.store.put(state)
        return wait

    def report_rate_limited(self, domain: str, retry_after: Optional[str] = None) -> float:
        """Record a 429 for ``domain`` and return the parsed Retry-After delay in seconds."""

        key = clean_domain(domain) or domain
        delay = parse_retry_after(retry_after)
        state = self.store.get(key)
        now = self._clock()
        # Domain-wide cooldown floor; the per-request retry delay is compute_backoff.
        state.backoff_until = max(state.backoff_until, now + max(delay, self.cooldown_after_429))
        state.rate_limited_count += 1
        self.store.put(state)
        logger.warning(
            "Rate limited by %s (Retry-After=%r); backing off %.1fs",
            key,
            retry_after,
            state.backoff_until - now,
        )
        return delay

    def snapshot(self, domain: str) -> DomainRateState:
        return self.store.get(clean_domain(domain) or domain)


__all__ = [
    "InMemoryRateStateStore",
    "RateLimiter",
    "RateStateStore",
    "compute_backoff",
    "parse_retry_after",
]
