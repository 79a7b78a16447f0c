"""Sliding-window rate gating for outbound sends (core domain).

Each RateGate owns its own per-scope sample history, so the short and long
windows are independent instances composed by the dispatcher. State lives for
the process lifetime and is never persisted.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from core.config import RateLimitConfig

LOGGER = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 300.0


@dataclass(frozen=True)
class RateDecision:
    """Admission decision; ``reset_time`` is set only when denied."""

    allowed: bool
    reset_time: Optional[float] = None


@dataclass
class _Sample:
    timestamp: float
    count: int


class RateGate:
    """Admit at most ``max_requests`` per trailing ``window_seconds`` per scope."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._history: Dict[str, List[_Sample]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> "RateGate":
        return cls(config.max_requests, config.window_seconds, **kwargs)

    def check_limit(self, scope: str) -> RateDecision:
        """Record one request for ``scope`` if the window has room.

        Trimming, counting and appending happen under one lock so concurrent
        checks for the same scope never over-admit.
        """

        with self._lock:
            now = self._clock()
            window_start = now - self.window_seconds
            history = [sample for sample in self._history.get(scope, []) if sample.timestamp > window_start]

            total = sum(sample.count for sample in history)
            if total >= self.max_requests:
                self._history[scope] = history
                # An empty history here means the samples expired between sweeps.
                oldest = history[0].timestamp if history else now
                return RateDecision(allowed=False, reset_time=oldest + self.window_seconds)

            history.append(_Sample(timestamp=now, count=1))
            self._history[scope] = history
            return RateDecision(allowed=True)

    async def wait_for_limit(self, scope: str) -> None:
        """Check once and, if denied, sleep until the window resets.

        This is a single-shot backoff: the request is not re-checked after
        sleeping, so callers that need a hard cap under contention must loop.
        """

        decision = self.check_limit(scope)
        if decision.allowed or decision.reset_time is None:
            return
        wait_seconds = decision.reset_time - self._clock()
        if wait_seconds > 0:
            LOGGER.debug("Rate gate %s/%ss waiting %.3fs", scope, self.window_seconds, wait_seconds)
            await self._sleep(wait_seconds)

    def cleanup(self) -> int:
        """Drop samples older than twice the window; return scopes removed."""

        removed = 0
        with self._lock:
            cutoff = self._clock() - self.window_seconds * 2
            for scope in list(self._history):
                kept = [sample for sample in self._history[scope] if sample.timestamp > cutoff]
                if kept:
                    self._history[scope] = kept
                else:
                    del self._history[scope]
                    removed += 1
        return removed

    def scopes(self) -> set[str]:
        with self._lock:
            return set(self._history)


def build_rate_gates(per_second: RateLimitConfig, per_minute: RateLimitConfig) -> List[RateGate]:
    """Return the gates in the order the dispatcher must await them."""

    return [RateGate.from_config(per_second), RateGate.from_config(per_minute)]


async def run_periodic_cleanup(
    gates: Iterable[RateGate],
    interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
) -> None:
    """Sweep every gate on a fixed interval until cancelled."""

    gates = list(gates)
    while True:
        await asyncio.sleep(interval_seconds)
        for gate in gates:
            removed = gate.cleanup()
            if removed:
                LOGGER.debug("Rate gate cleanup removed %s idle scopes", removed)
