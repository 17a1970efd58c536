"""
Tests for the rejection counters.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import pytest

from stackreject.counters import RejectionCounters


class TestRejectionCounters:
    """Tests for the low/high accumulator."""

    def test_add(self):
        """Counts accumulate across calls."""
        counters = RejectionCounters()
        counters.add(1, 2)
        counters.add(high=3)
        assert (counters.low, counters.high) == (1, 5)
        assert counters.total == 6

    def test_negative_raises(self):
        """Counters are never decremented."""
        with pytest.raises(ValueError, match="non-negative"):
            RejectionCounters().add(-1, 0)

    def test_reduce(self):
        """Per-worker accumulators sum to the run total."""
        workers = [RejectionCounters(1, 0), RejectionCounters(2, 5), RejectionCounters()]
        total = RejectionCounters.reduce(workers)
        assert total == RejectionCounters(3, 5)
        # Inputs are not modified
        assert workers[0] == RejectionCounters(1, 0)

    def test_iadd(self):
        """In-place addition merges another accumulator."""
        counters = RejectionCounters(1, 1)
        counters += RejectionCounters(2, 3)
        assert counters == RejectionCounters(3, 4)

    def test_reset(self):
        """A new run starts from zero."""
        counters = RejectionCounters(4, 4)
        counters.reset()
        assert counters.total == 0

    def test_fractions(self):
        """Fractions are relative to processed samples."""
        assert RejectionCounters(5, 10).fractions(100) == (0.05, 0.10)
        assert RejectionCounters(5, 10).fractions(0) == (0.0, 0.0)
