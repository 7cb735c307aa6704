from __future__ import annotations

import json
from collections.abc import Mapping


class BitmexError(RuntimeError):
    """Base class for failures raised by the BitMEX broker."""


class ClockNotSynchronizedError(BitmexError):
    """Raised when server time is requested before the bootstrap sync ran."""


class ExhaustedRetriesError(BitmexError):
    """Raised when the rate limiter cannot secure headroom within its poll budget."""

    def __init__(self, *, floor: float, attempts: int, remaining: float) -> None:
        super().__init__(
            f"No more retries: remaining={remaining:g} never exceeded floor={floor:g} "
            f"after {attempts} polls"
        )
        self.floor = floor
        self.attempts = attempts
        self.remaining = remaining


class ApiError(BitmexError):
    """Raised when the exchange answers with an ``{"error": ...}`` payload."""

    def __init__(
        self,
        *,
        error_message: str,
        verb: str,
        endpoint: str,
        request_payload: Mapping[str, object] | None = None,
        error_name: str | None = None,
        status_code: int | None = None,
    ) -> None:
        payload = dict(request_payload or {})
        super().__init__(
            f"{error_message} during {verb} {endpoint} with {json.dumps(payload, default=str)}"
        )
        self.error_message = error_message
        self.error_name = error_name
        self.verb = verb
        self.endpoint = endpoint
        self.request_payload = payload
        self.status_code = status_code


class TransportError(BitmexError):
    """Raised when the HTTP call or JSON decoding fails; the cause is chained."""

    def __init__(self, message: str, *, verb: str, endpoint: str) -> None:
        super().__init__(f"{message} during {verb} {endpoint}")
        self.verb = verb
        self.endpoint = endpoint
