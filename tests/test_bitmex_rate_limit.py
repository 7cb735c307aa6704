from __future__ import annotations

import asyncio

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from bitmexplus.adapters.bitmex.instrumentation import InMemoryMetricsSink
from bitmexplus.adapters.bitmex.rate_limit import (
    HeaderRateLimiter,
    RateLimitState,
    coerce_rate_limit_value,
)
from bitmexplus.domain.errors import ExhaustedRetriesError


def _make_limiter(
    remaining: float,
    *,
    limit: float = 30,
    max_polls: int = 400,
    on_sleep=None,  # type: ignore[no-untyped-def]
) -> tuple[HeaderRateLimiter, list[float]]:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        if on_sleep is not None:
            on_sleep()

    limiter = HeaderRateLimiter(
        state=RateLimitState(limit=limit, remaining=remaining),
        max_polls=max_polls,
        metrics=InMemoryMetricsSink(),
        sleep_fn=fake_sleep,
    )
    return limiter, sleeps


def test_acquire_passes_without_waiting_when_headroom_exists() -> None:
    limiter, sleeps = _make_limiter(12)

    asyncio.run(limiter.acquire(10))

    assert sleeps == []
    assert limiter.remaining == 11


def test_acquire_waits_for_refill_tick_when_floor_not_exceeded() -> None:
    limiter: HeaderRateLimiter
    limiter, sleeps = _make_limiter(11, on_sleep=lambda: limiter.refill_once())

    asyncio.run(limiter.acquire(10))

    assert sleeps == [0.25]
    assert limiter.remaining == pytest.approx(10.5)
    assert limiter.metrics.counters["rate_limit_waits"] == 1  # type: ignore[attr-defined]


def test_acquire_raises_after_exhausting_poll_budget() -> None:
    limiter, sleeps = _make_limiter(0)

    with pytest.raises(ExhaustedRetriesError) as excinfo:
        asyncio.run(limiter.acquire(10))

    assert excinfo.value.attempts == 400
    assert excinfo.value.floor == 10
    assert len(sleeps) == 399
    assert limiter.remaining == -1
    assert limiter.metrics.counters["rate_limit_exhausted"] == 1  # type: ignore[attr-defined]


def test_negative_floor_lets_primed_bootstrap_request_through() -> None:
    limiter, sleeps = _make_limiter(0)
    limiter.prime(1)

    asyncio.run(limiter.acquire(-1))

    assert sleeps == []
    assert limiter.remaining == 0


def test_concurrent_acquires_each_charge_the_budget_up_front() -> None:
    limiter, _ = _make_limiter(30)

    async def _run() -> None:
        await asyncio.gather(*(limiter.acquire(10) for _ in range(5)))

    asyncio.run(_run())
    assert limiter.remaining == 25


def test_refill_once_adds_a_sixtieth_of_the_limit_and_caps_at_limit() -> None:
    limiter, _ = _make_limiter(0, limit=30)
    assert limiter.refill_once() == pytest.approx(0.5)

    limiter.state.remaining = 29.8
    assert limiter.refill_once() == 30


def test_set_rate_limit_falls_back_to_field_defaults() -> None:
    limiter, _ = _make_limiter(0)

    limiter.set_rate_limit("limit", "not-a-number")
    assert limiter.state.limit == 30

    limiter.set_rate_limit("remaining", -5)
    assert limiter.state.remaining == 10

    limiter.set_rate_limit("reset", None)
    assert limiter.state.reset == 10


def test_set_rate_limit_truncates_and_clamps_remaining_to_limit() -> None:
    limiter, _ = _make_limiter(0)

    limiter.set_rate_limit("remaining", "12.9")
    assert limiter.state.remaining == 12

    limiter.set_rate_limit("remaining", "50")
    assert limiter.state.remaining == 30


def test_set_rate_limit_rejects_unknown_field() -> None:
    limiter, _ = _make_limiter(0)
    with pytest.raises(ValueError, match="unknown rate limit field"):
        limiter.set_rate_limit("burst", 5)


def test_reconcile_reads_case_insensitive_headers() -> None:
    limiter, _ = _make_limiter(3)

    limiter.reconcile(
        {
            "X-RateLimit-Limit": "60",
            "X-RateLimit-Remaining": "45",
            "X-RateLimit-Reset": "1700000000",
        }
    )

    assert limiter.snapshot() == RateLimitState(limit=60, remaining=45, reset=1700000000)
    assert limiter.metrics.gauges["rate_limit_remaining"] == 45  # type: ignore[attr-defined]


def test_reconcile_without_headers_uses_defaults() -> None:
    limiter, _ = _make_limiter(3, limit=120)

    limiter.reconcile({})

    assert limiter.snapshot() == RateLimitState(limit=30, remaining=10, reset=10)


def test_coerce_rejects_non_finite_and_boolean_values() -> None:
    assert coerce_rate_limit_value("limit", "inf") == 30
    assert coerce_rate_limit_value("remaining", "nan") == 10
    assert coerce_rate_limit_value("remaining", True) == 10
    assert coerce_rate_limit_value("remaining", 1) == 1


def test_refill_task_runs_until_stopped() -> None:
    limiter = HeaderRateLimiter(
        state=RateLimitState(limit=30, remaining=0),
        refill_interval_seconds=0.01,
    )

    async def _run() -> None:
        limiter.start_refill()
        assert limiter.refill_running
        await asyncio.sleep(0.05)
        await limiter.stop()

    asyncio.run(_run())
    assert not limiter.refill_running
    assert 0 < limiter.remaining <= 30


def test_constructor_validates_intervals() -> None:
    with pytest.raises(ValueError):
        HeaderRateLimiter(max_polls=0)
    with pytest.raises(ValueError):
        HeaderRateLimiter(refill_interval_seconds=0)


@settings(suppress_health_check=[HealthCheck.function_scoped_fixture], max_examples=50)
@given(
    start=st.integers(min_value=0, max_value=30),
    calls=st.integers(min_value=0, max_value=20),
    ticks=st.integers(min_value=0, max_value=200),
)
def test_budget_never_exceeds_limit_and_drops_one_per_attempt(
    start: int, calls: int, ticks: int
) -> None:
    limiter, _ = _make_limiter(start, limit=30)

    async def _run() -> None:
        for _ in range(calls):
            await limiter.acquire(-10_000)

    asyncio.run(_run())
    assert limiter.remaining == start - calls

    for _ in range(ticks):
        limiter.refill_once()
    assert limiter.remaining <= 30
    assert limiter.remaining <= start - calls + ticks * 0.5 + 1e-9
