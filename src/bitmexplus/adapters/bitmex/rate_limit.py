from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace

from bitmexplus.adapters.bitmex.instrumentation import MetricsSink
from bitmexplus.adapters.bitmex.retry import PollSchedule
from bitmexplus.domain.errors import ExhaustedRetriesError

logger = logging.getLogger(__name__)

RATE_LIMIT_FIELDS = ("limit", "remaining", "reset")
RATE_LIMIT_HEADER_PREFIX = "x-ratelimit-"
DEFAULT_LIMIT = 30
DEFAULT_BUDGET_FIELD = 10


@dataclass
class RateLimitState:
    limit: float = DEFAULT_LIMIT
    remaining: float = 0
    reset: float = 0


def coerce_rate_limit_value(field: str, value: object) -> int:
    """Parse a server-reported counter, falling back to the field default.

    Anything that is not a finite number >= 1 (missing header, garbage, zero,
    negative) maps to 30 for ``limit`` and 10 for every other field.
    """
    default = DEFAULT_LIMIT if field == "limit" else DEFAULT_BUDGET_FIELD
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if not math.isfinite(parsed) or parsed < 1:
        return default
    return int(parsed)


class HeaderRateLimiter:
    """Remaining-request budget, refilled locally and corrected from response headers.

    ``acquire`` charges the budget before the request runs, so concurrent callers
    under-spend rather than over-spend the server allowance.
    """

    def __init__(
        self,
        *,
        state: RateLimitState | None = None,
        poll_interval_seconds: float = 0.25,
        max_polls: int = 400,
        refill_interval_seconds: float = 1.0,
        window_seconds: float = 60.0,
        metrics: MetricsSink | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must be >= 0")
        if max_polls < 1:
            raise ValueError("max_polls must be >= 1")
        if refill_interval_seconds <= 0:
            raise ValueError("refill_interval_seconds must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.state = state or RateLimitState()
        self.poll_interval_seconds = poll_interval_seconds
        self.max_polls = max_polls
        self.refill_interval_seconds = refill_interval_seconds
        self.window_seconds = window_seconds
        self.metrics = metrics or MetricsSink()
        self._sleep = sleep_fn
        self._refill_task: asyncio.Task[None] | None = None

    @property
    def remaining(self) -> float:
        return self.state.remaining

    @property
    def refill_running(self) -> bool:
        return self._refill_task is not None and not self._refill_task.done()

    def snapshot(self) -> RateLimitState:
        return replace(self.state)

    def prime(self, budget: float = 1) -> None:
        """Allow ``budget`` requests through before any server feedback exists."""
        self.state.remaining = budget

    def set_rate_limit(self, field: str, value: object) -> None:
        if field not in RATE_LIMIT_FIELDS:
            raise ValueError(f"unknown rate limit field: {field!r}")
        coerced = coerce_rate_limit_value(field, value)
        if field == "remaining":
            coerced = min(coerced, int(self.state.limit))
        setattr(self.state, field, coerced)

    def reconcile(self, headers: Mapping[str, str]) -> None:
        lowered = {str(key).lower(): value for key, value in headers.items()}
        for field in RATE_LIMIT_FIELDS:
            self.set_rate_limit(field, lowered.get(RATE_LIMIT_HEADER_PREFIX + field))
        self.metrics.gauge("rate_limit_remaining", self.state.remaining)
        logger.debug(
            "Fetched remaining limit",
            extra={"extra": {"remaining": self.state.remaining, "limit": self.state.limit}},
        )

    def refill_once(self) -> float:
        self.state.remaining = min(
            self.state.limit,
            self.state.remaining + self.state.limit / self.window_seconds,
        )
        logger.debug(
            "Calculated remaining limit",
            extra={"extra": {"remaining": self.state.remaining}},
        )
        return self.state.remaining

    async def acquire(self, floor: float) -> None:
        """Charge one request, then wait until the budget exceeds ``floor``.

        Raises ``ExhaustedRetriesError`` after ``max_polls`` unsuccessful checks.
        """
        self.state.remaining -= 1
        schedule = PollSchedule(
            max_attempts=self.max_polls,
            delay_seconds=self.poll_interval_seconds,
        )
        while True:
            if self.state.remaining > floor:
                schedule.record_hit()
                if schedule.attempts > 1:
                    self.metrics.inc("rate_limit_waits")
                return
            delay = schedule.record_miss()
            if delay is None:
                self.metrics.inc("rate_limit_exhausted")
                logger.warning(
                    "Rate limit budget exhausted",
                    extra={
                        "extra": {
                            "floor": floor,
                            "remaining": self.state.remaining,
                            "attempts": schedule.attempts,
                        }
                    },
                )
                raise ExhaustedRetriesError(
                    floor=floor,
                    attempts=schedule.attempts,
                    remaining=self.state.remaining,
                )
            await self._sleep(delay)

    def start_refill(self) -> asyncio.Task[None]:
        if self._refill_task is None or self._refill_task.done():
            self._refill_task = asyncio.create_task(self._refill_loop())
        return self._refill_task

    async def stop(self) -> None:
        task, self._refill_task = self._refill_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _refill_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refill_interval_seconds)
            self.refill_once()
