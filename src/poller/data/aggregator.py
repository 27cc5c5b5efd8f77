from __future__ import annotations

import threading
from operator import attrgetter
from typing import Callable, Dict, Iterable, List, Mapping, Optional

import numpy as np
import structlog

from poller.utils.time import align_down_ms, floor_to_second_ms, utc_now_ms
from poller.utils.types import Candle, Tick

log = structlog.get_logger("aggregator")

DEFAULT_INTERVALS: Dict[str, int] = {"1m": 60_000}
RETENTION_FACTOR = 3

_by_time = attrgetter("bucket_time_ms")


class CandleAggregator:
    """
    Buffers per-symbol, per-interval ticks and cuts wall-clock aligned OHLC candles.

    Key behavior:
    - add_price() stamps the tick with the current second and appends it to
      every configured interval's buffer, at most once per second per buffer.
    - extract_ohlc() builds one candle per (symbol, requested interval) for the
      most recent *fully elapsed* window [end - width, end), where
      end = now - now % width. Windows are epoch aligned, so two processes
      agree on boundaries.
    - Once a candle is cut, every tick before the window end is dropped,
      including stragglers older than the window start.
    - Buffers of intervals that are never extracted are trimmed to
      3 x the largest interval on every extraction touching the symbol.

    One lock guards the whole buffer map; add/extract bodies are short.
    """

    def __init__(
        self,
        intervals: Optional[Mapping[str, int]] = None,
        *,
        debug: bool = False,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.intervals: Dict[str, int] = dict(intervals or DEFAULT_INTERVALS)
        for name, width in self.intervals.items():
            if width <= 0:
                raise ValueError(f"interval {name} must be > 0 ms")
        self.max_interval_ms = max(self.intervals.values())
        self.retention_ms = RETENTION_FACTOR * self.max_interval_ms
        self.debug = debug

        self._clock = clock or utc_now_ms
        self._buffers: Dict[str, Dict[str, List[Tick]]] = {}
        self._lock = threading.Lock()

    def smallest_interval(self) -> str:
        return min(self.intervals, key=self.intervals.__getitem__)

    # -------------------------------------------------------------------------
    # ingest
    # -------------------------------------------------------------------------

    def add_price(self, symbol: str, price: float, volume: float) -> None:
        bucket = floor_to_second_ms(self._clock())
        tick = Tick(price=price, volume=volume, bucket_time_ms=bucket)

        with self._lock:
            per_symbol = self._buffers.setdefault(symbol, {})
            for interval in self.intervals:
                ticks = per_symbol.setdefault(interval, [])
                # one tick per second; newest entries sit at the tail
                if any(t.bucket_time_ms == bucket for t in reversed(ticks)):
                    continue
                ticks.append(tick)
                if self.debug:
                    log.debug("tick_added", symbol=symbol, interval=interval, price=price)

    # -------------------------------------------------------------------------
    # extraction
    # -------------------------------------------------------------------------

    def extract_ohlc(self, intervals: Iterable[str]) -> List[Candle]:
        requested = list(intervals)
        now = self._clock()
        out: List[Candle] = []

        with self._lock:
            for symbol, per_symbol in self._buffers.items():
                for interval in requested:
                    ticks = per_symbol.get(interval)
                    width = self.intervals.get(interval)
                    if not ticks or width is None:
                        continue

                    ticks.sort(key=_by_time)

                    candle_end = align_down_ms(now, width)
                    candle_start = candle_end - width

                    times = np.fromiter((t.bucket_time_ms for t in ticks), dtype=np.int64, count=len(ticks))
                    start_idx = int(np.searchsorted(times, candle_start, side="left"))
                    end_idx = int(np.searchsorted(times, candle_end, side="left"))
                    if start_idx == end_idx:
                        continue

                    out.append(_build_candle(symbol, interval, ticks[start_idx:end_idx], candle_start))
                    del ticks[:end_idx]

                self._cleanup_locked(symbol, per_symbol, now)

        return out

    def cleanup_old_ticks(self, symbol: str, now: int) -> None:
        with self._lock:
            per_symbol = self._buffers.get(symbol)
            if per_symbol:
                self._cleanup_locked(symbol, per_symbol, now)

    def _cleanup_locked(self, symbol: str, per_symbol: Dict[str, List[Tick]], now: int) -> None:
        oldest_valid = now - self.retention_ms
        for interval, ticks in per_symbol.items():
            before = len(ticks)
            if before == 0:
                continue
            ticks[:] = [t for t in ticks if t.bucket_time_ms >= oldest_valid]
            if self.debug and len(ticks) != before:
                log.debug("ticks_cleaned", symbol=symbol, interval=interval, dropped=before - len(ticks))

    # -------------------------------------------------------------------------
    # introspection
    # -------------------------------------------------------------------------

    def buffered(self, symbol: str, interval: str) -> List[Tick]:
        """Copy of the ticks currently held for (symbol, interval)."""
        with self._lock:
            return list(self._buffers.get(symbol, {}).get(interval, ()))

    def tick_count(self) -> int:
        with self._lock:
            return sum(len(ticks) for per_symbol in self._buffers.values() for ticks in per_symbol.values())


def _build_candle(symbol: str, interval: str, group: List[Tick], open_time: int) -> Candle:
    """group is time-sorted and non-empty."""
    prices = np.fromiter((t.price for t in group), dtype=np.float64, count=len(group))
    volumes = np.fromiter((t.volume for t in group), dtype=np.float64, count=len(group))
    return Candle(
        symbol=symbol,
        interval=interval,
        open=float(prices[0]),
        high=float(prices.max()),
        low=float(prices.min()),
        close=float(prices[-1]),
        volume=float(volumes.sum()),
        open_time=int(open_time),
        trade_count=len(group),
    )
