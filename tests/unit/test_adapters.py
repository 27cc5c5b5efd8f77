import pytest

from poller.errors import FetchError
from poller.exchanges.adapters import BinanceAdapter, BitgetAdapter, BybitAdapter, OkxAdapter
from poller.exchanges.base import ExchangeAdapter
from poller.net.client import ResilientClient
from tests.helpers.fake_http import FakeResponse, FakeSession, SleepRecorder


def adapter_for(cls, scripted):
    session = FakeSession(scripted)
    return cls(ResilientClient(session, sleep=SleepRecorder()), timeout_s=5.0), session


@pytest.mark.asyncio
async def test_binance_fetch():
    a, session = adapter_for(BinanceAdapter, [FakeResponse(200, [{"symbol": "BTCUSDT", "lastPrice": "1", "volume": "2"}])])
    tickers = await a.fetch_all_tickers()

    assert [t.symbol for t in tickers] == ["BTCUSDT"]
    call = session.calls[0]
    assert call["url"] == "https://fapi.binance.com/fapi/v1/ticker/24hr"
    assert call["params"] is None
    assert call["timeout"].total == 5.0


@pytest.mark.asyncio
@pytest.mark.parametrize("cls, params, payload", [
    (OkxAdapter, {"instType": "SWAP"}, {"code": "0", "data": [{"instId": "BTC-USDT-SWAP", "last": "1"}]}),
    (BybitAdapter, {"category": "linear"}, {"retCode": 0, "result": {"list": [{"symbol": "BTCUSDT", "lastPrice": "1"}]}}),
    (BitgetAdapter, {"productType": "umcbl"}, {"code": "00000", "data": [{"symbol": "BTCUSDT_UMCBL", "last": "1"}]}),
])
async def test_query_params_sent(cls, params, payload):
    a, session = adapter_for(cls, [FakeResponse(200, payload)])
    tickers = await a.fetch_all_tickers()
    assert len(tickers) == 1
    assert session.calls[0]["params"] == params


@pytest.mark.asyncio
async def test_http_error_becomes_fetch_error_with_status():
    a, _ = adapter_for(BybitAdapter, [FakeResponse(503, body=b"upstream down")])
    with pytest.raises(FetchError) as ei:
        await a.fetch_all_tickers()
    assert ei.value.status == 503
    assert "upstream down" in str(ei.value)


@pytest.mark.asyncio
async def test_throttled_past_cap_becomes_fetch_error():
    a, session = adapter_for(OkxAdapter, [FakeResponse(429) for _ in range(6)])
    with pytest.raises(FetchError) as ei:
        await a.fetch_all_tickers()
    assert ei.value.status == 429
    assert len(session.calls) == 6


@pytest.mark.asyncio
async def test_non_json_body():
    a, _ = adapter_for(BinanceAdapter, [FakeResponse(200, body=b"<html>maintenance</html>")])
    with pytest.raises(FetchError):
        await a.fetch_all_tickers()


def test_base_adapter_requires_a_parser():
    with pytest.raises(TypeError):
        ExchangeAdapter(ResilientClient(FakeSession([])))

    class NoParser(ExchangeAdapter):
        name = "noparser"

    with pytest.raises(TypeError):
        NoParser(ResilientClient(FakeSession([])))
