from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

log = structlog.get_logger("rate_budget")

SAFETY_RATIO = 0.1


@dataclass(slots=True)
class RateBudget:
    """
    Last known consumption for one provider limit.

    used/limit: provider units (request weight, order count, ...)
    window_s:   length of the provider's accounting window
    reset_at:   monotonic deadline at which the window is expected to roll
    """
    used: int
    limit: int
    window_s: float
    reset_at: float

    def remaining(self, weight: int) -> int:
        return self.limit - self.used - weight

    def should_delay(self, weight: int) -> bool:
        # keep a 10% buffer below the hard limit
        return self.remaining(weight) <= int(self.limit * SAFETY_RATIO)

    def delay_for(self, weight: int, now: float) -> float:
        remaining = self.remaining(weight)
        if remaining >= 0:
            return 0.0
        until_reset = max(0.0, self.reset_at - now)
        if self.limit <= 0 or self.window_s <= 0:
            return until_reset
        per_second = self.limit / self.window_s
        estimate = -remaining / per_second
        return max(estimate, until_reset)


class RateBudgetTracker:
    """
    Per-key view of provider rate limits, fed from response headers.

    Keys are logical limit dimensions ("weight", "orders", or an endpoint
    path), so cardinality stays small and entries are never evicted. The
    lock only covers map reads/writes; callers sleep outside it.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._budgets: Dict[str, RateBudget] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[RateBudget]:
        with self._lock:
            return self._budgets.get(key)

    def should_delay(self, key: str, weight: int) -> bool:
        budget = self.get(key)
        if budget is None:
            return False
        return budget.should_delay(weight)

    def delay_for(self, key: str, weight: int) -> float:
        """Seconds to wait before spending `weight` on `key` (never negative)."""
        budget = self.get(key)
        if budget is None:
            return 0.0
        return budget.delay_for(weight, self._clock())

    def update(self, key: str, used: int, limit: int, window_s: float) -> None:
        """Overwrite the budget for `key`; the window restarts now."""
        budget = RateBudget(
            used=int(used),
            limit=int(limit),
            window_s=float(window_s),
            reset_at=self._clock() + float(window_s),
        )
        with self._lock:
            self._budgets[key] = budget
        log.debug("rate_budget_updated", key=key, used=budget.used, limit=budget.limit, window_s=budget.window_s)
