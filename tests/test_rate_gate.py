from __future__ import annotations

import asyncio
import threading

import pytest

from core.config import RateLimitConfig
from core.rate_gate import RateGate, build_rate_gates, run_periodic_cleanup


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSleep:
    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.now += seconds


def test_second_request_in_window_is_denied() -> None:
    clock = FakeClock()
    gate = RateGate(max_requests=1, window_seconds=1.0, clock=clock)

    first_call = clock.now
    assert gate.check_limit("whatsapp").allowed
    clock.now += 0.25
    decision = gate.check_limit("whatsapp")

    assert not decision.allowed
    assert first_call + 1.0 <= decision.reset_time <= first_call + 1.0 + 1e-6


def test_request_allowed_after_window_passes() -> None:
    clock = FakeClock()
    gate = RateGate(max_requests=2, window_seconds=1.0, clock=clock)

    assert gate.check_limit("s").allowed
    assert gate.check_limit("s").allowed
    assert not gate.check_limit("s").allowed
    clock.now += 1.0
    assert gate.check_limit("s").allowed


def test_scopes_are_independent() -> None:
    gate = RateGate(max_requests=1, window_seconds=60.0, clock=FakeClock())

    assert gate.check_limit("a").allowed
    assert gate.check_limit("b").allowed
    assert not gate.check_limit("a").allowed


def test_denied_check_does_not_record_a_sample() -> None:
    clock = FakeClock()
    gate = RateGate(max_requests=1, window_seconds=1.0, clock=clock)

    gate.check_limit("s")
    clock.now += 0.5
    gate.check_limit("s")
    clock.now += 0.6
    # Only the first sample existed, and it has now expired.
    assert gate.check_limit("s").allowed


def test_wait_for_limit_sleeps_until_reset() -> None:
    clock = FakeClock()
    sleep = FakeSleep(clock)
    gate = RateGate(max_requests=1, window_seconds=1.0, clock=clock, sleep=sleep)

    asyncio.run(gate.wait_for_limit("s"))
    assert sleep.calls == []

    clock.now += 0.4
    asyncio.run(gate.wait_for_limit("s"))
    assert sleep.calls == [pytest.approx(0.6)]


def test_cleanup_drops_idle_scopes() -> None:
    clock = FakeClock()
    gate = RateGate(max_requests=5, window_seconds=1.0, clock=clock)
    gate.check_limit("old")
    clock.now += 1.5
    gate.check_limit("fresh")
    clock.now += 0.6

    removed = gate.cleanup()

    assert removed == 1
    assert gate.scopes() == {"fresh"}


def test_build_rate_gates_orders_short_window_first() -> None:
    short, long = build_rate_gates(RateLimitConfig(1, 1.0), RateLimitConfig(60, 60.0))

    assert (short.max_requests, short.window_seconds) == (1, 1.0)
    assert (long.max_requests, long.window_seconds) == (60, 60.0)


def test_rejects_non_positive_limits() -> None:
    with pytest.raises(ValueError):
        RateGate(max_requests=0, window_seconds=1.0)


def test_check_limit_admits_exact_count_across_threads() -> None:
    gate = RateGate(max_requests=50, window_seconds=60.0)
    barrier = threading.Barrier(8)
    allowed: list[int] = []

    def worker() -> None:
        barrier.wait()
        allowed.append(sum(1 for _ in range(100) if gate.check_limit("shared").allowed))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(allowed) == 50


def test_periodic_cleanup_sweeps_until_cancelled() -> None:
    clock = FakeClock()
    gate = RateGate(max_requests=5, window_seconds=1.0, clock=clock)
    gate.check_limit("idle")
    clock.now += 2.5

    async def run() -> bool:
        task = asyncio.create_task(run_periodic_cleanup([gate], interval_seconds=0.01))
        for _ in range(200):
            if not gate.scopes():
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return task.cancelled()

    assert asyncio.run(run())
    assert gate.scopes() == set()
