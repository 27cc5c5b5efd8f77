# src/storage/sink.py
from __future__ import annotations

from typing import Protocol, Sequence

from poller.utils.types import Candle

DERIVATIVE_SUFFIXES = ("-USDT-SWAP", "-USDT", "-USD-SWAP", "-USD", "-PERP", "-FUTURE", "-SWAP")
QUOTE_SUFFIXES = ("USDT_UMCBL", "USDT", "BUSD", "USDC", "TUSD", "DAI", "USD")


class CandleSink(Protocol):
    async def save_candles(self, batch: Sequence[Candle], instance: str) -> None:
        """Persist candles idempotently on (symbol, interval, open_time); [] is a no-op."""

    async def close(self) -> None: ...


def clean_symbol(raw: str) -> str:
    """
    Venue symbol -> base asset for storage keys.
    BTC-USDT-SWAP -> BTC, BTCUSDT_UMCBL -> BTC, ETHUSDT -> ETH
    """
    symbol = raw.upper()
    for suffix in DERIVATIVE_SUFFIXES:
        if symbol.endswith(suffix):
            return symbol[: -len(suffix)]
    for quote in QUOTE_SUFFIXES:
        if symbol.endswith(quote):
            return symbol[: -len(quote)]
    return symbol


class MemoryCandleSink:
    """Dict-backed sink for dry runs; first write for a key wins."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, str, int], tuple[Candle, str]] = {}

    async def save_candles(self, batch: Sequence[Candle], instance: str) -> None:
        for c in batch:
            self.rows.setdefault((clean_symbol(c.symbol), c.interval, c.open_time), (c, instance))

    async def close(self) -> None:
        return None
