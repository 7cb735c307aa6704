from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from bitmexplus.adapters.bitmex.instrumentation import MetricsSink
from bitmexplus.logging_context import with_stream_context

logger = logging.getLogger(__name__)

# Tables whose snapshots replace the whole book; consumers re-read them on every change.
FULL_SNAPSHOT_TABLES = frozenset({"orderBookL2"})
DEFAULT_SYMBOL = "XBTUSD"

SnapshotHandler = Callable[[Sequence[Any]], None]
StreamCallback = Callable[..., None]


class StreamTransport(Protocol):
    def subscribe(self, symbol: str, table: str, on_snapshot: SnapshotHandler) -> None: ...

    def current_table(self, symbol: str, table: str) -> Sequence[Any]: ...


class _Unset:
    def __repr__(self) -> str:
        return "<unset>"


UNSET: Any = _Unset()


@dataclass
class DispatchCursor:
    symbol: str
    table: str
    last_item: Any = field(default=UNSET)
    snapshots: int = 0
    delivered: int = 0

    @property
    def primed(self) -> bool:
        return self.last_item is not UNSET


def incremental_tail(snapshot: Sequence[Any], last_item: Any) -> Sequence[Any]:
    """Items of ``snapshot`` after the last occurrence of ``last_item``.

    When ``last_item`` is absent (first delivery, or it aged out of a truncated
    table) the whole snapshot is returned.
    """
    if last_item is not UNSET:
        for index in range(len(snapshot) - 1, -1, -1):
            if snapshot[index] == last_item:
                return snapshot[index + 1 :]
    return snapshot


class StreamDispatcher:
    """Turns repeated full-table snapshots into one callback per new item."""

    def __init__(self, transport: StreamTransport, *, metrics: MetricsSink | None = None) -> None:
        self.transport = transport
        self.metrics = metrics or MetricsSink()
        self._cursors: dict[tuple[str, str], DispatchCursor] = {}

    def monitor_stream(
        self,
        symbol: str = DEFAULT_SYMBOL,
        table: str = "",
        callback: StreamCallback | None = None,
    ) -> DispatchCursor:
        if not table:
            raise ValueError("table is required")
        if callback is None:
            raise ValueError("callback is required")
        key = (symbol, table)
        if key in self._cursors:
            raise ValueError(f"already monitoring {table} for {symbol}")
        cursor = DispatchCursor(symbol=symbol, table=table)
        self._cursors[key] = cursor

        def _on_snapshot(snapshot: Sequence[Any]) -> None:
            self._dispatch(cursor, callback, snapshot)

        self.transport.subscribe(symbol, table, _on_snapshot)
        logger.info("Monitoring stream", extra={"extra": {"symbol": symbol, "table": table}})
        return cursor

    def cursor(self, symbol: str, table: str) -> DispatchCursor | None:
        return self._cursors.get((symbol, table))

    def current_table(self, symbol: str, table: str) -> Sequence[Any]:
        return self.transport.current_table(symbol, table)

    def _dispatch(
        self,
        cursor: DispatchCursor,
        callback: StreamCallback,
        snapshot: Sequence[Any],
    ) -> None:
        if not snapshot:
            return
        with with_stream_context(cursor.symbol, cursor.table):
            cursor.snapshots += 1
            if cursor.table in FULL_SNAPSHOT_TABLES:
                self._invoke(callback)
            else:
                tail = incremental_tail(snapshot, cursor.last_item)
                if cursor.primed and len(tail) == len(snapshot):
                    self.metrics.inc("stream_cursor_misses")
                    logger.debug(
                        "Cursor not found in snapshot, replaying",
                        extra={"extra": {"items": len(snapshot)}},
                    )
                for item in tail:
                    self._invoke(callback, item)
                cursor.delivered += len(tail)
            cursor.last_item = snapshot[-1]

    def _invoke(self, callback: StreamCallback, *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            self.metrics.inc("stream_callback_errors")
            logger.exception("stream callback failed")
