from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# ---- ingest-level primitives ----

@dataclass(slots=True, frozen=True)
class TickerSnapshot:
    """
    Normalized 24h ticker row as returned by an exchange adapter.
    Prices/volumes stay as the venue's strings; the scheduler parses them.
    """
    symbol: str
    last_price: str
    volume_24h: Optional[str] = None

@dataclass(slots=True, frozen=True)
class Tick:
    price: float
    volume: float
    bucket_time_ms: int  # observation time truncated to the second

# ---- aggregation output ----

@dataclass(slots=True, frozen=True)
class Candle:
    symbol: str
    interval: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    open_time: int  # epoch ms, window start
    trade_count: int
