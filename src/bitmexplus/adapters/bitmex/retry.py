from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class PollState(StrEnum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"


@dataclass
class PollSchedule:
    """Bounded poll loop: ``max_attempts`` checks spaced ``delay_seconds`` apart.

    The schedule only tracks state; the caller performs the check and the sleep.
    A miss on the final attempt moves the schedule to ``EXHAUSTED`` without a delay.
    """

    max_attempts: int
    delay_seconds: float
    attempts: int = field(default=0, init=False)
    state: PollState = field(default=PollState.PENDING, init=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")

    @property
    def done(self) -> bool:
        return self.state is not PollState.PENDING

    def record_hit(self) -> None:
        self._ensure_pending()
        self.attempts += 1
        self.state = PollState.SATISFIED

    def record_miss(self) -> float | None:
        """Register a failed check; return the delay before the next one, or None."""
        self._ensure_pending()
        self.attempts += 1
        if self.attempts >= self.max_attempts:
            self.state = PollState.EXHAUSTED
            return None
        return self.delay_seconds

    def _ensure_pending(self) -> None:
        if self.done:
            raise RuntimeError(f"poll schedule already {self.state.value}")
