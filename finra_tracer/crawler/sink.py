"""
Downstream sinks for decoded trade records.

Records are pushed in arrival order. Delivery is at-least-once: a fetch
replayed after a re-login can emit trades that were already seen, which
``DedupSink`` filters out when enabled.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Protocol

from finra_tracer.crawler.models import TradeRecord
from finra_tracer.utils.logger import get_logger

logger = get_logger(__name__)

_TRADE_LOGGER = get_logger("finra_tracer.trades")


class TradeSink(Protocol):
    async def emit(self, record: TradeRecord) -> None: ...


class LogSink:
    """Writes each trade as one log line (stdout through the console handler)."""

    async def emit(self, record: TradeRecord) -> None:
        _TRADE_LOGGER.info("%s", record)


class QueueSink:
    """Hands trades to an ``asyncio.Queue`` for an external consumer."""

    def __init__(self, queue: asyncio.Queue[TradeRecord] | None = None) -> None:
        self.queue: asyncio.Queue[TradeRecord] = queue or asyncio.Queue()

    async def emit(self, record: TradeRecord) -> None:
        await self.queue.put(record)


class DedupSink:
    """Drops trades already forwarded once, keyed on a SHA-256 of every field.

    The seen-set lives in memory only and is bounded by ``max_entries``;
    when full it is cleared rather than evicted entry by entry.
    """

    def __init__(self, inner: TradeSink, max_entries: int = 100_000) -> None:
        self._inner = inner
        self._max_entries = max_entries
        self._seen: set[str] = set()
        self.duplicates = 0

    @staticmethod
    def compute_hash(record: TradeRecord) -> str:
        key = "|".join(
            (
                record.instrument_id,
                record.trade_date,
                record.execution_time,
                str(record.price),
                record.quantity,
            )
        )
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    async def emit(self, record: TradeRecord) -> None:
        content_hash = self.compute_hash(record)
        if content_hash in self._seen:
            self.duplicates += 1
            logger.debug("Duplicate trade skipped: %s", record)
            return
        if len(self._seen) >= self._max_entries:
            logger.info("Dedup cache full (%d), clearing", self._max_entries)
            self._seen.clear()
        self._seen.add(content_hash)
        await self._inner.emit(record)
