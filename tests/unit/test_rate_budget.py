import pytest

from poller.net.rate_budget import RateBudget, RateBudgetTracker


class _Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_should_delay_inside_safety_margin():
    b = RateBudget(used=92, limit=100, window_s=60, reset_at=60)
    # 100 - 92 - 5 = 3 <= 10
    assert b.should_delay(5)
    b.used = 50
    assert not b.should_delay(5)


def test_margin_boundary_is_inclusive():
    b = RateBudget(used=85, limit=100, window_s=60, reset_at=60)
    assert b.remaining(5) == 10
    assert b.should_delay(5)
    assert not b.should_delay(4)


def test_delay_zero_while_budget_not_exceeded():
    b = RateBudget(used=95, limit=100, window_s=60, reset_at=60)
    assert b.should_delay(1)
    assert b.delay_for(1, now=0) == 0.0


def test_delay_uses_larger_of_refill_estimate_and_reset():
    # over by 101 units at 20 units/s -> 5.05 s, reset in 2 s
    b = RateBudget(used=1300, limit=1200, window_s=60, reset_at=2.0)
    assert b.delay_for(1, now=0.0) == pytest.approx(5.05)
    # reset further away wins
    b.reset_at = 30.0
    assert b.delay_for(1, now=0.0) == pytest.approx(30.0)


def test_delay_never_negative():
    b = RateBudget(used=1300, limit=1200, window_s=60, reset_at=10.0)
    assert b.delay_for(1, now=500.0) >= 0.0
    zero = RateBudget(used=5, limit=0, window_s=0, reset_at=10.0)
    assert zero.delay_for(1, now=20.0) == 0.0
    assert zero.delay_for(1, now=4.0) == pytest.approx(6.0)


def test_tracker_unknown_key():
    t = RateBudgetTracker(clock=_Clock())
    assert t.get("weight") is None
    assert not t.should_delay("weight", 10)
    assert t.delay_for("weight", 10) == 0.0


def test_tracker_update_restarts_window():
    clock = _Clock(100.0)
    t = RateBudgetTracker(clock=clock)
    t.update("weight", 1250, 1200, 60)

    b = t.get("weight")
    assert (b.used, b.limit, b.window_s, b.reset_at) == (1250, 1200, 60.0, 160.0)
    assert t.should_delay("weight", 1)
    assert t.delay_for("weight", 1) == pytest.approx(60.0)

    clock.now = 130.0
    assert t.delay_for("weight", 1) == pytest.approx(30.0)


def test_tracker_keys_are_independent():
    t = RateBudgetTracker(clock=_Clock())
    t.update("weight", 1190, 1200, 60)
    t.update("orders", 0, 1600, 60)
    assert t.should_delay("weight", 1)
    assert not t.should_delay("orders", 1)
    assert not t.should_delay("/api/v5/market/tickers", 1)
