"""
Aggregate rejection counters.

A stacking run keeps one running total of low-side and one of high-side
rejected samples. Each worker owns its own RejectionCounters and the driver
reduces them when the run completes, so no counter is ever shared between
concurrent calls.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass
class RejectionCounters:
    """Running totals of rejected samples (low side / high side)."""

    low: int = 0
    high: int = 0

    def add(self, low: int = 0, high: int = 0) -> None:
        """Increment the totals. Counts are never decremented."""
        if low < 0 or high < 0:
            raise ValueError(f"Rejection counts must be non-negative, got ({low}, {high})")
        self.low += int(low)
        self.high += int(high)

    def merge(self, other: RejectionCounters) -> RejectionCounters:
        """Fold another accumulator into this one and return self."""
        self.add(other.low, other.high)
        return self

    def __iadd__(self, other: RejectionCounters) -> RejectionCounters:
        return self.merge(other)

    def reset(self) -> None:
        """Reset both totals, at the start of a new stacking run."""
        self.low = 0
        self.high = 0

    @property
    def total(self) -> int:
        """Total number of rejected samples."""
        return self.low + self.high

    def fractions(self, n_samples: int) -> tuple[float, float]:
        """
        Rejected fractions relative to the number of processed samples.

        Parameters
        ----------
        n_samples : int
            Number of samples seen (pixels x frames).

        Returns
        -------
        tuple[float, float]
            (low_fraction, high_fraction); (0, 0) when nothing was processed.
        """
        if n_samples <= 0:
            return 0.0, 0.0
        return self.low / n_samples, self.high / n_samples

    @classmethod
    def reduce(cls, counters: Iterable[RejectionCounters]) -> RejectionCounters:
        """Sum per-worker accumulators into a fresh one."""
        total = cls()
        for c in counters:
            total.merge(c)
        return total
