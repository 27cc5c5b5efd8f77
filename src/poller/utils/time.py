from __future__ import annotations

import re
import time

# --- fast, allocation-free time helpers ---

def utc_now_ms() -> int:
    """Unix epoch milliseconds (int)."""
    return time.time_ns() // 1_000_000

def floor_to_second_ms(ts_ms: int) -> int:
    """Truncate a millisecond timestamp to its whole second (still in ms)."""
    return ts_ms - (ts_ms % 1000)

def align_down_ms(ts_ms: int, width_ms: int) -> int:
    """Start of the epoch-aligned window of `width_ms` that contains ts_ms."""
    return ts_ms - (ts_ms % width_ms)

# --- interval names ("30s", "1m", "4h", "1d") ---

_UNIT_MS = {"s": 1_000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}
_INTERVAL_RE = re.compile(r"^(\d+)([smhd])$")

def interval_to_ms(name: str) -> int:
    m = _INTERVAL_RE.match(name.strip())
    if not m or int(m.group(1)) == 0:
        raise ValueError(f"invalid interval name: {name!r}")
    return int(m.group(1)) * _UNIT_MS[m.group(2)]
