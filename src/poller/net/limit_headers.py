from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

# Header maps are keyed by lower-cased header name (see client.Response).
HeaderReader = Callable[[Mapping[str, str], str], "list[LimitReading]"]


@dataclass(slots=True, frozen=True)
class LimitReading:
    key: str
    used: int
    limit: int
    window_s: float


def _int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


# Binance futures: used counters only; limits are documented constants.
BINANCE_HEADERS: tuple[tuple[str, str, float, int], ...] = (
    ("x-mbx-used-weight-1m", "weight", 60.0, 1200),
    ("x-mbx-order-count-1m", "orders", 60.0, 1600),
    ("x-mbx-order-count-1d", "daily_orders", 86_400.0, 10_000),
)


def binance_usage(headers: Mapping[str, str], key: str) -> list[LimitReading]:
    """Read X-MBX-* counters. Each dimension has its own fixed key; `key` is unused."""
    out: list[LimitReading] = []
    for header, dim, window_s, limit in BINANCE_HEADERS:
        used = _int(headers.get(header))
        if used is None:
            continue
        out.append(LimitReading(key=dim, used=used, limit=limit, window_s=window_s))
    return out


def ratelimit_usage(
    headers: Mapping[str, str],
    key: str,
    now_s: Optional[Callable[[], float]] = None,
) -> list[LimitReading]:
    """
    Read the X-RateLimit-{Limit,Remaining,Reset} triple used by bybit and others.
    Reset is an absolute epoch (seconds or milliseconds); the window is the
    time left until it.
    """
    limit = _int(headers.get("x-ratelimit-limit"))
    remaining = _int(headers.get("x-ratelimit-remaining"))
    reset = _int(headers.get("x-ratelimit-reset"))
    if limit is None or remaining is None or reset is None:
        return []
    reset_s = reset / 1000.0 if reset > 10_000_000_000 else float(reset)
    now = (now_s or time.time)()
    window_s = max(0.0, reset_s - now)
    return [LimitReading(key=key, used=limit - remaining, limit=limit, window_s=window_s)]
