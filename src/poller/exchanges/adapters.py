from __future__ import annotations

from typing import Any

from poller.exchanges import parser
from poller.exchanges.base import ExchangeAdapter
from poller.utils.types import TickerSnapshot


class BinanceAdapter(ExchangeAdapter):
    name = "binance"
    tickers_url = "https://fapi.binance.com/fapi/v1/ticker/24hr"
    # X-MBX-USED-WEIGHT-1M is tracked under "weight"
    limit_key = "weight"

    def parse_tickers(self, payload: Any) -> list[TickerSnapshot]:
        return parser.parse_binance(payload)


class OkxAdapter(ExchangeAdapter):
    name = "okx"
    tickers_url = "https://www.okx.com/api/v5/market/tickers"
    params = {"instType": "SWAP"}

    def parse_tickers(self, payload: Any) -> list[TickerSnapshot]:
        return parser.parse_okx(payload)


class BybitAdapter(ExchangeAdapter):
    name = "bybit"
    tickers_url = "https://api.bybit.com/v5/market/tickers"
    params = {"category": "linear"}

    def parse_tickers(self, payload: Any) -> list[TickerSnapshot]:
        return parser.parse_bybit(payload)


class BitgetAdapter(ExchangeAdapter):
    name = "bitget"
    tickers_url = "https://api.bitget.com/api/mix/v1/market/tickers"
    params = {"productType": "umcbl"}

    def parse_tickers(self, payload: Any) -> list[TickerSnapshot]:
        return parser.parse_bitget(payload)
