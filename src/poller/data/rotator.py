from __future__ import annotations

from typing import Sequence


class SymbolRotator:
    """
    Walks the symbol universe in fixed-size slices, one slice per poll cycle.

    The slice that reaches the end of the list is returned short rather than
    wrapped; the following call starts again at index 0. With 5 symbols and
    batch_size=2: [A,B], [C,D], [E], [A,B], ...
    """
    __slots__ = ("symbols", "batch_size", "cursor")

    def __init__(self, symbols: Sequence[str], batch_size: int):
        if batch_size < 0:
            raise ValueError("batch_size must be >= 0")
        self.symbols: tuple[str, ...] = tuple(symbols)
        self.batch_size = int(batch_size)
        self.cursor = 0

    def next_batch(self) -> list[str]:
        n = len(self.symbols)
        if n == 0 or self.batch_size == 0:
            return []
        start = self.cursor
        end = min(start + self.batch_size, n)
        self.cursor = end % n
        return list(self.symbols[start:end])

    def batches_per_cycle(self) -> int:
        """How many next_batch() calls cover every symbol once."""
        if not self.symbols or self.batch_size == 0:
            return 0
        return -(-len(self.symbols) // self.batch_size)
