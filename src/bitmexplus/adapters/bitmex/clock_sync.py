from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from bitmexplus.domain.errors import ClockNotSynchronizedError

logger = logging.getLogger(__name__)


class ServerTimeProvider(Protocol):
    async def fetch_server_time_ms(self) -> int: ...


def parse_server_timestamp_ms(value: object) -> int:
    """Accept epoch milliseconds or an ISO-8601 string as returned by the API root."""
    if isinstance(value, bool):
        raise ValueError(f"unsupported server timestamp: {value!r}")
    if isinstance(value, int | float):
        return int(value)
    if isinstance(value, str) and value.strip():
        candidate = value.strip()
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        parsed = datetime.fromisoformat(candidate)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return int(parsed.timestamp() * 1000)
    raise ValueError(f"unsupported server timestamp: {value!r}")


@dataclass
class ClockSyncService:
    """One-shot offset between the local clock and the exchange clock.

    The offset is sampled once per process; drift after that sample is accepted.
    """

    provider: ServerTimeProvider

    def __post_init__(self) -> None:
        self._offset_ms: int | None = None

    @staticmethod
    def utc_now_ms() -> int:
        return int(datetime.now(UTC).timestamp() * 1000)

    @property
    def synchronized(self) -> bool:
        return self._offset_ms is not None

    @property
    def offset_ms(self) -> int:
        if self._offset_ms is None:
            raise ClockNotSynchronizedError("clock offset has not been sampled yet")
        return self._offset_ms

    async def sync(self) -> int:
        if self._offset_ms is not None:
            return self._offset_ms
        server_ms = int(await self.provider.fetch_server_time_ms())
        self._offset_ms = self.utc_now_ms() - server_ms
        logger.info("Clock offset sampled", extra={"extra": {"offset_ms": self._offset_ms}})
        return self._offset_ms

    def server_now_ms(self) -> int:
        return self.utc_now_ms() - self.offset_ms

    def now_ms(self) -> int:
        if self._offset_ms is None:
            return self.utc_now_ms()
        return self.server_now_ms()

    def get_server_time(self) -> datetime:
        return datetime.fromtimestamp(self.server_now_ms() / 1000, tz=UTC)
