import pytest

from poller.data.aggregator import CandleAggregator
from tests.helpers.fakes import FakeClock

MIN = 60_000
T0 = 28_333_334 * MIN  # 1_700_000_040_000, minute aligned


def make(intervals=None, now=T0):
    clock = FakeClock(now)
    agg = CandleAggregator(intervals or {"1m": MIN}, clock=clock)
    return agg, clock


def add_at(agg, clock, ts_ms, symbol, price, volume=1.0):
    clock.now_ms = ts_ms
    agg.add_price(symbol, price, volume)


def test_same_second_is_stored_once():
    agg, clock = make()
    add_at(agg, clock, T0 + 1_000, "BTCUSDT", 100.0)
    add_at(agg, clock, T0 + 1_700, "BTCUSDT", 101.0)

    ticks = agg.buffered("BTCUSDT", "1m")
    assert len(ticks) == 1
    assert ticks[0].price == 100.0
    assert ticks[0].bucket_time_ms == T0 + 1_000


def test_tick_truncated_to_second():
    agg, clock = make()
    add_at(agg, clock, T0 + 12_345, "BTCUSDT", 1.0)
    assert agg.buffered("BTCUSDT", "1m")[0].bucket_time_ms == T0 + 12_000


def test_tick_stored_per_configured_interval():
    agg, clock = make({"1m": MIN, "5m": 5 * MIN})
    add_at(agg, clock, T0 + 1_000, "ETHUSDT", 10.0)
    assert len(agg.buffered("ETHUSDT", "1m")) == 1
    assert len(agg.buffered("ETHUSDT", "5m")) == 1


def test_candle_uses_time_order_not_insertion_order():
    agg, clock = make()
    # inserted out of order: 50s, 10s, 30s
    add_at(agg, clock, T0 + 50_000, "BTCUSDT", 3.0, volume=4.0)
    add_at(agg, clock, T0 + 10_000, "BTCUSDT", 5.0, volume=1.0)
    add_at(agg, clock, T0 + 30_000, "BTCUSDT", 8.0, volume=2.0)

    clock.now_ms = T0 + MIN
    candles = agg.extract_ohlc(["1m"])

    assert len(candles) == 1
    c = candles[0]
    assert c.symbol == "BTCUSDT"
    assert c.interval == "1m"
    assert c.open == 5.0
    assert c.close == 3.0
    assert c.high == 8.0
    assert c.low == 3.0
    assert c.volume == pytest.approx(7.0)
    assert c.trade_count == 3
    assert c.open_time == T0


def test_extraction_consumes_the_window():
    agg, clock = make()
    add_at(agg, clock, T0 + 10_000, "BTCUSDT", 5.0)
    add_at(agg, clock, T0 + 30_000, "BTCUSDT", 8.0)

    clock.now_ms = T0 + MIN
    assert len(agg.extract_ohlc(["1m"])) == 1
    assert agg.extract_ohlc(["1m"]) == []
    assert agg.buffered("BTCUSDT", "1m") == []


def test_current_window_ticks_are_kept():
    agg, clock = make()
    add_at(agg, clock, T0 + 10_000, "BTCUSDT", 5.0)
    add_at(agg, clock, T0 + MIN + 5_000, "BTCUSDT", 6.0)

    clock.now_ms = T0 + MIN + 20_000
    candles = agg.extract_ohlc(["1m"])

    assert [c.open_time for c in candles] == [T0]
    remaining = agg.buffered("BTCUSDT", "1m")
    assert [t.bucket_time_ms for t in remaining] == [T0 + MIN + 5_000]


def test_stragglers_before_window_are_dropped_with_the_candle():
    agg, clock = make()
    add_at(agg, clock, T0 - 30_000, "BTCUSDT", 1.0)  # previous window, never cut
    add_at(agg, clock, T0 + 5_000, "BTCUSDT", 2.0)

    clock.now_ms = T0 + MIN
    candles = agg.extract_ohlc(["1m"])

    assert len(candles) == 1
    assert candles[0].trade_count == 1
    assert candles[0].open == 2.0
    assert agg.buffered("BTCUSDT", "1m") == []


def test_empty_window_emits_nothing_and_keeps_older_ticks():
    agg, clock = make()
    add_at(agg, clock, T0 - 30_000, "BTCUSDT", 1.0)

    clock.now_ms = T0 + MIN
    assert agg.extract_ohlc(["1m"]) == []
    # still inside retention (3 x 1m), so it survives until cleanup catches it
    assert len(agg.buffered("BTCUSDT", "1m")) == 1


def test_retention_cleans_unrequested_intervals():
    agg, clock = make({"1m": MIN, "5m": 5 * MIN})
    assert agg.retention_ms == 15 * MIN

    add_at(agg, clock, T0, "BTCUSDT", 1.0)
    fresh_at = T0 + 16 * MIN
    add_at(agg, clock, fresh_at, "BTCUSDT", 2.0)

    clock.now_ms = fresh_at + 1_000
    agg.extract_ohlc(["1m"])

    five = agg.buffered("BTCUSDT", "5m")
    assert [t.bucket_time_ms for t in five] == [fresh_at]


def test_cleanup_old_ticks_direct():
    agg, clock = make()
    add_at(agg, clock, T0, "BTCUSDT", 1.0)
    agg.cleanup_old_ticks("BTCUSDT", T0 + 3 * MIN + 1)
    assert agg.buffered("BTCUSDT", "1m") == []
    # unknown symbol is a no-op
    agg.cleanup_old_ticks("NOPE", T0)


def test_multiple_symbols_and_unknown_interval():
    agg, clock = make()
    add_at(agg, clock, T0 + 1_000, "BTCUSDT", 100.0)
    add_at(agg, clock, T0 + 2_000, "ETHUSDT", 10.0)

    clock.now_ms = T0 + MIN
    candles = agg.extract_ohlc(["1m", "7m"])
    assert sorted(c.symbol for c in candles) == ["BTCUSDT", "ETHUSDT"]
    assert agg.tick_count() == 0


def test_boundaries_are_epoch_aligned():
    agg, clock = make()
    add_at(agg, clock, T0 + 59_000, "BTCUSDT", 1.0)
    # extraction mid-way through the next minute still cuts [T0, T0 + 1m)
    clock.now_ms = T0 + MIN + 37_123
    (c,) = agg.extract_ohlc(["1m"])
    assert c.open_time == T0


def test_smallest_interval_and_validation():
    agg, _ = make({"5m": 5 * MIN, "1m": MIN, "1h": 60 * MIN})
    assert agg.smallest_interval() == "1m"
    assert agg.max_interval_ms == 60 * MIN
    with pytest.raises(ValueError):
        CandleAggregator({"bad": 0})
