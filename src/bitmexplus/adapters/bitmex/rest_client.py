from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from time import monotonic
from typing import Any
from urllib.parse import urlencode

import httpx

from bitmexplus.adapters.bitmex.auth import build_auth_headers, expires_at
from bitmexplus.adapters.bitmex.clock_sync import ClockSyncService
from bitmexplus.adapters.bitmex.instrumentation import MetricsSink
from bitmexplus.adapters.bitmex.rate_limit import HeaderRateLimiter
from bitmexplus.domain.errors import ApiError, TransportError
from bitmexplus.logging_context import with_request_context
from bitmexplus.observability import get_instrumentation

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://www.bitmex.com"
TESTNET_BASE_URL = "https://testnet.bitmex.com"
API_ROOT = "/api/v1/"
READ_VERBS = frozenset({"GET"})
DEFAULT_FLOOR = 10


def select_base_url(*, testnet: bool) -> str:
    return TESTNET_BASE_URL if testnet else PRODUCTION_BASE_URL


def _query_value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping | list | tuple):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def encode_query(payload: Mapping[str, object]) -> str:
    """Serialize ``payload`` to ``?k=v&...`` in insertion order; empty payload gives ``""``.

    Nested mappings and sequences (``filter``, ``columns``) are sent as JSON text.
    """
    if not payload:
        return ""
    return "?" + urlencode([(str(key), _query_value(value)) for key, value in payload.items()])


def encode_body(payload: Mapping[str, object]) -> str:
    return json.dumps(dict(payload), separators=(",", ":"), default=str)


@dataclass(frozen=True)
class PreparedRequest:
    verb: str
    endpoint: str
    query: str
    body: str

    @property
    def path(self) -> str:
        return f"{API_ROOT}{self.endpoint}{self.query}"


def prepare_request(
    verb: str,
    endpoint: str,
    payload: Mapping[str, object] | None = None,
) -> PreparedRequest:
    """Build the query string or the body exactly once.

    The returned ``body`` is both sent and signed; re-serializing it could reorder
    keys and invalidate the signature.
    """
    normalized_verb = verb.upper()
    normalized_endpoint = endpoint.lstrip("/")
    data = payload or {}
    if normalized_verb in READ_VERBS:
        return PreparedRequest(normalized_verb, normalized_endpoint, encode_query(data), "")
    return PreparedRequest(normalized_verb, normalized_endpoint, "", encode_body(data))


class BitmexRestClient:
    def __init__(
        self,
        *,
        base_url: str,
        limiter: HeaderRateLimiter,
        api_key: str | None = None,
        api_secret: str | None = None,
        now_ms_fn: Callable[[], int] = ClockSyncService.utc_now_ms,
        metrics: MetricsSink | None = None,
        signature_ttl_seconds: int = 60,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.limiter = limiter
        self.api_key = api_key
        self.api_secret = api_secret
        self.now_ms_fn = now_ms_fn
        self.metrics = metrics or MetricsSink()
        self.signature_ttl_seconds = signature_ttl_seconds
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    async def close(self) -> None:
        await self._client.aclose()

    def build_headers(self, prepared: PreparedRequest) -> dict[str, str]:
        headers = {
            "content-type": "application/json",
            "accept": "application/json",
        }
        if self.api_key and self.api_secret:
            headers.update(
                build_auth_headers(
                    self.api_key,
                    self.api_secret,
                    verb=prepared.verb,
                    path=prepared.path,
                    expires=expires_at(self.now_ms_fn(), self.signature_ttl_seconds),
                    body=prepared.body,
                )
            )
        return headers

    async def make_request(
        self,
        verb: str,
        endpoint: str,
        payload: Mapping[str, object] | None = None,
        floor: float = DEFAULT_FLOOR,
    ) -> Any:
        """Throttle, sign and send one REST call; return the decoded JSON body.

        Raises ``ExhaustedRetriesError`` when no budget frees up, ``TransportError``
        when the HTTP client is closed or the call or JSON decoding fails, and
        ``ApiError`` when the body carries an ``error`` object.
        """
        prepared = prepare_request(verb, endpoint, payload)
        with with_request_context(prepared.verb, prepared.endpoint):
            if self._client.is_closed:
                raise TransportError(
                    "HTTP client is closed", verb=prepared.verb, endpoint=prepared.endpoint
                )
            await self.limiter.acquire(floor)
            headers = self.build_headers(prepared)
            started = monotonic()
            try:
                with get_instrumentation().trace(
                    "rest_call", attrs={"verb": prepared.verb, "endpoint": prepared.endpoint}
                ):
                    response = await self._client.request(
                        prepared.verb,
                        prepared.path,
                        headers=headers,
                        content=prepared.body if prepared.verb not in READ_VERBS else None,
                    )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                self.metrics.inc("rest_transport_errors")
                logger.warning("REST call failed", extra={"extra": {"error": str(exc)}})
                raise TransportError(
                    str(exc) or type(exc).__name__,
                    verb=prepared.verb,
                    endpoint=prepared.endpoint,
                ) from exc

            self.metrics.observe_ms(
                f"rest_{prepared.verb.lower()}_latency",
                (monotonic() - started) * 1000,
            )
            self.limiter.reconcile(response.headers)

            try:
                body = response.json()
            except ValueError as exc:
                self.metrics.inc("rest_transport_errors")
                raise TransportError(
                    f"invalid JSON response (status {response.status_code})",
                    verb=prepared.verb,
                    endpoint=prepared.endpoint,
                ) from exc

            if isinstance(body, dict) and "error" in body:
                self.metrics.inc("rest_api_errors")
                raise self._to_api_error(body["error"], prepared, payload, response.status_code)
            return body

    @staticmethod
    def _to_api_error(
        error: object,
        prepared: PreparedRequest,
        payload: Mapping[str, object] | None,
        status_code: int,
    ) -> ApiError:
        if isinstance(error, dict):
            message = str(error.get("message") or "exchange error")
            name = error.get("name")
        else:
            message = str(error)
            name = None
        return ApiError(
            error_message=message,
            error_name=str(name) if name is not None else None,
            verb=prepared.verb,
            endpoint=prepared.endpoint,
            request_payload=payload,
            status_code=status_code,
        )
