# src/storage/redis_candles.py
from __future__ import annotations

import math
from typing import Optional, Sequence

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from poller.errors import StorageError
from poller.utils.types import Candle
from storage.sink import clean_symbol

log = structlog.get_logger("redis_candles")

FIELDS = ("O", "H", "L", "C", "V", "N")


def key(prefix: str, symbol: str, interval: str, field: str) -> str:
    # {prefix}:{SYM}:{TF}:{FIELD}
    return f"{prefix}:{symbol}:{interval}:{field}"


def _finite(c: Candle) -> bool:
    return all(math.isfinite(x) for x in (c.open, c.high, c.low, c.close, c.volume))


class RedisCandleSink:
    """
    RedisTimeSeries candle store.

    One series per (symbol, interval, field). Points are written with
    ON_DUPLICATE FIRST, so re-sending a candle for the same open_time keeps
    the stored value. TS.ADD creates missing series with retention + labels.
    """

    def __init__(self, url: str, *, retention_ms: int, key_prefix: str = "kline", redis: Optional[Redis] = None):
        self.url = url
        self.retention_ms = retention_ms
        self.key_prefix = key_prefix
        self._r: Optional[Redis] = redis

    async def connect(self) -> None:
        if self._r is None:
            self._r = Redis.from_url(self.url)
        try:
            await self._r.ping()
        except (RedisError, OSError) as e:
            raise StorageError(f"redis unreachable at {self.url}: {e}") from e
        log.info("redis_connected", url=self.url)

    async def close(self) -> None:
        if self._r is not None:
            await self._r.aclose()
            self._r = None

    async def save_candles(self, batch: Sequence[Candle], instance: str) -> None:
        if not batch:
            return
        if self._r is None:
            raise StorageError("redis sink used before connect()")

        p = self._r.pipeline()
        written = 0
        for c in batch:
            if not c.symbol or not c.interval or not _finite(c):
                log.warning("candle_rejected", symbol=c.symbol, interval=c.interval, open_time=c.open_time)
                continue
            sym = clean_symbol(c.symbol)
            values = (c.open, c.high, c.low, c.close, c.volume, float(c.trade_count))
            for field, value in zip(FIELDS, values):
                p.execute_command(
                    "TS.ADD", key(self.key_prefix, sym, c.interval, field), c.open_time, value,
                    "RETENTION", self.retention_ms,
                    "ON_DUPLICATE", "FIRST",
                    "LABELS", "symbol", sym, "tf", c.interval, "field", field, "instance", instance,
                )
            written += 1

        if written == 0:
            return
        try:
            await p.execute()
        except (RedisError, OSError) as e:
            raise StorageError(f"failed to save {written} candles: {e}") from e
        log.info("candles_saved", count=written, instance=instance)
