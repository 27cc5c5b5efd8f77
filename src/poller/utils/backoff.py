from __future__ import annotations

import random

def jitter(v: float, *, ratio: float = 0.25) -> float:
    """
    Add ±ratio jitter. ratio=0.25 -> multiply by [0.75, 1.25].
    """
    lo = 1.0 - ratio
    hi = 1.0 + ratio
    return v * (lo + (hi - lo) * random.random())

def retry_delay_s(retry: int, *, ratio: float = 0.25) -> float:
    """Exponential backoff for the given retry number: 2**retry seconds, jittered."""
    return jitter(2.0 ** retry, ratio=ratio)

def parse_retry_after(value: str | None) -> float | None:
    """Whole seconds from a Retry-After header; None when absent or not an integer."""
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return float(int(value))

def random_delay_ms(max_ms: int) -> int:
    """Uniform integer delay in [0, max_ms); 0 when max_ms <= 0."""
    if max_ms <= 0:
        return 0
    return random.randrange(max_ms)
