"""Bounded integer-microsecond latency histogram."""

from __future__ import annotations

import math
from collections import Counter

LOWEST_MICROS = 10
HIGHEST_MICROS = 1_000_000


class LatencyHistogram:
    """Counts integer latencies; values above ``highest`` saturate at ``highest``.

    Quantiles use the same rule as HdrHistogram: the smallest recorded value
    whose cumulative count reaches ``ceil(q * total)``.
    """

    def __init__(self, lowest: int = LOWEST_MICROS, highest: int = HIGHEST_MICROS) -> None:
        if lowest < 1 or highest < 2 * lowest:
            raise ValueError("highest must be at least twice lowest, and lowest positive")
        self.lowest = lowest
        self.highest = highest
        self._counts: Counter[int] = Counter()
        self._total = 0

    def record(self, value: int) -> None:
        """Record one sample, clamping it into ``[0, highest]``."""
        value = min(max(int(value), 0), self.highest)
        self._counts[value] += 1
        self._total += 1

    def count(self) -> int:
        return self._total

    def max(self) -> int:
        return max(self._counts) if self._counts else 0

    def value_at_quantile(self, quantile: float) -> int:
        if not 0.0 <= quantile <= 1.0:
            raise ValueError(f"quantile must be within [0, 1], got {quantile}")
        if not self._total:
            return 0
        target = max(math.ceil(quantile * self._total), 1)
        seen = 0
        for value in sorted(self._counts):
            seen += self._counts[value]
            if seen >= target:
                return value
        return self.max()

    def value_at_percentile(self, percentile: float) -> int:
        return self.value_at_quantile(percentile / 100.0)
