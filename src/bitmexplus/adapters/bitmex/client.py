from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from bitmexplus.adapters.bitmex.clock_sync import ClockSyncService, parse_server_timestamp_ms
from bitmexplus.adapters.bitmex.instrumentation import InstrumentationMetricsSink, MetricsSink
from bitmexplus.adapters.bitmex.rate_limit import HeaderRateLimiter
from bitmexplus.adapters.bitmex.rest_client import DEFAULT_FLOOR, BitmexRestClient
from bitmexplus.adapters.bitmex.stream import (
    DEFAULT_SYMBOL,
    DispatchCursor,
    StreamCallback,
    StreamDispatcher,
    StreamTransport,
)
from bitmexplus.domain.errors import BitmexError, TransportError
from bitmexplus.logging_utils import setup_logging
from bitmexplus.observability import configure_instrumentation

if TYPE_CHECKING:
    from bitmexplus.config import Settings

logger = logging.getLogger(__name__)

BOOTSTRAP_ENDPOINT = ""
BOOTSTRAP_FLOOR = -1


class BitmexPlusClient:
    """Rate-limited, signed REST access plus incremental stream dispatch.

    ``start()`` must run once before steady-state use: it lets one request through
    the primed limiter to sample the server clock, then starts the refill task.
    ``shutdown()`` stops that task and closes the HTTP client; a shut down client
    cannot be started again.
    """

    def __init__(
        self,
        *,
        transport: StreamTransport,
        limiter: HeaderRateLimiter,
        base_url: str,
        api_key: str | None = None,
        api_secret: str | None = None,
        metrics: MetricsSink | None = None,
        default_floor: float = DEFAULT_FLOOR,
        signature_ttl_seconds: int = 60,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.metrics = metrics or InstrumentationMetricsSink()
        self.limiter = limiter
        self.default_floor = default_floor
        self.clock_sync = ClockSyncService(provider=self)
        self.rest = BitmexRestClient(
            base_url=base_url,
            limiter=limiter,
            api_key=api_key,
            api_secret=api_secret,
            now_ms_fn=self.clock_sync.now_ms,
            metrics=self.metrics,
            signature_ttl_seconds=signature_ttl_seconds,
            timeout_seconds=timeout_seconds,
            client=http_client,
        )
        self.streams = StreamDispatcher(transport, metrics=self.metrics)
        self._started = False
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: StreamTransport,
        metrics: MetricsSink | None = None,
        http_client: httpx.AsyncClient | None = None,
        configure_logging: bool = False,
    ) -> BitmexPlusClient:
        if configure_logging:
            setup_logging(settings.log_level)
        configure_instrumentation(
            enabled=settings.observability_enabled,
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )
        metrics = metrics or InstrumentationMetricsSink()
        limiter = HeaderRateLimiter(
            poll_interval_seconds=settings.rate_limit_poll_interval_ms / 1000,
            max_polls=settings.rate_limit_max_polls,
            refill_interval_seconds=settings.rate_limit_refill_interval_seconds,
            window_seconds=settings.rate_limit_window_seconds,
            metrics=metrics,
        )
        has_credentials = settings.has_credentials()
        return cls(
            transport=transport,
            limiter=limiter,
            base_url=settings.resolved_base_url(),
            api_key=settings.bitmex_api_key.get_secret_value() if has_credentials else None,
            api_secret=settings.bitmex_api_secret.get_secret_value() if has_credentials else None,
            metrics=metrics,
            default_floor=settings.default_request_floor,
            signature_ttl_seconds=settings.signature_ttl_seconds,
            timeout_seconds=settings.request_timeout_seconds,
            http_client=http_client,
        )

    async def __aenter__(self) -> BitmexPlusClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def start(self) -> None:
        if self._closed:
            raise BitmexError("client has been shut down")
        if self._started:
            return
        self.limiter.prime(1)
        await self.clock_sync.sync()
        self.limiter.start_refill()
        self._started = True
        logger.info(
            "BitMEX client started",
            extra={"extra": {"base_url": self.rest.base_url, "signed": self.rest.has_credentials}},
        )

    async def shutdown(self) -> None:
        await self.limiter.stop()
        await self.rest.close()
        self._started = False
        self._closed = True

    async def fetch_server_time_ms(self) -> int:
        response = await self.rest.make_request(
            "GET", BOOTSTRAP_ENDPOINT, {}, floor=BOOTSTRAP_FLOOR
        )
        timestamp = response.get("timestamp") if isinstance(response, dict) else None
        try:
            return parse_server_timestamp_ms(timestamp)
        except ValueError as exc:
            raise TransportError(
                "bootstrap response has no usable timestamp",
                verb="GET",
                endpoint=BOOTSTRAP_ENDPOINT,
            ) from exc

    def get_server_time(self) -> datetime:
        return self.clock_sync.get_server_time()

    def set_rate_limit(self, field: str, value: object) -> None:
        self.limiter.set_rate_limit(field, value)

    async def throttle(self, floor: float) -> None:
        await self.limiter.acquire(floor)

    async def make_request(
        self,
        verb: str,
        endpoint: str,
        payload: Mapping[str, object] | None = None,
        floor: float | None = None,
    ) -> Any:
        return await self.rest.make_request(
            verb,
            endpoint,
            payload,
            self.default_floor if floor is None else floor,
        )

    def monitor_stream(
        self,
        symbol: str = DEFAULT_SYMBOL,
        table: str = "",
        callback: StreamCallback | None = None,
    ) -> DispatchCursor:
        return self.streams.monitor_stream(symbol, table, callback)

    def current_table(self, symbol: str, table: str) -> Sequence[Any]:
        return self.streams.current_table(symbol, table)
