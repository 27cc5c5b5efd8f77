from __future__ import annotations

from typing import Any, Iterable, Optional

from poller.errors import FetchError
from poller.utils.types import TickerSnapshot


def _opt_str(v: Any) -> Optional[str]:
    return None if v is None else str(v)


def _rows(payload: Any, venue: str) -> Iterable[dict]:
    if not isinstance(payload, list):
        raise FetchError(f"{venue} returned an unexpected ticker payload")
    return (row for row in payload if isinstance(row, dict))


def _snapshot(row: dict, sym_key: str, px_key: str, vol_key: str, venue: str) -> TickerSnapshot:
    sym = row.get(sym_key)
    px = row.get(px_key)
    if sym is None or px is None:
        raise FetchError(f"{venue} ticker row missing {sym_key}/{px_key}")
    return TickerSnapshot(symbol=str(sym), last_price=str(px), volume_24h=_opt_str(row.get(vol_key)))


def parse_binance(payload: Any) -> list[TickerSnapshot]:
    """
    /fapi/v1/ticker/24hr → bare array:
      [{"symbol": "BTCUSDT", "lastPrice": "64000.1", "volume": "1234.5", ...}, ...]
    """
    return [_snapshot(r, "symbol", "lastPrice", "volume", "binance") for r in _rows(payload, "binance")]


def parse_okx(payload: Any) -> list[TickerSnapshot]:
    """
    /api/v5/market/tickers → {"code": "0", "msg": "", "data": [{"instId": "BTC-USDT-SWAP", "last": ..., "vol24h": ...}]}
    """
    if not isinstance(payload, dict):
        raise FetchError("okx returned an unexpected ticker payload")
    code = str(payload.get("code"))
    if code != "0":
        raise FetchError(f"okx API error: {code} - {payload.get('msg')}")
    return [_snapshot(r, "instId", "last", "vol24h", "okx") for r in _rows(payload.get("data"), "okx")]


def parse_bybit(payload: Any) -> list[TickerSnapshot]:
    """
    /v5/market/tickers → {"retCode": 0, "retMsg": "OK", "result": {"list": [{"symbol", "lastPrice", "volume24h"}]}}
    """
    if not isinstance(payload, dict):
        raise FetchError("bybit returned an unexpected ticker payload")
    if payload.get("retCode") != 0:
        raise FetchError(f"bybit API error: {payload.get('retMsg')}")
    result = payload.get("result") or {}
    return [_snapshot(r, "symbol", "lastPrice", "volume24h", "bybit") for r in _rows(result.get("list"), "bybit")]


def parse_bitget(payload: Any) -> list[TickerSnapshot]:
    """
    /api/mix/v1/market/tickers → {"code": "00000", "msg": "success", "data": [{"symbol": "BTCUSDT_UMCBL", "last", "baseVolume"}]}
    """
    if not isinstance(payload, dict):
        raise FetchError("bitget returned an unexpected ticker payload")
    code = str(payload.get("code"))
    if code != "00000":
        raise FetchError(f"bitget API error: {code} - {payload.get('msg')}")
    return [_snapshot(r, "symbol", "last", "baseVolume", "bitget") for r in _rows(payload.get("data"), "bitget")]
