"""
Tests for the stack module.

Tests cover:
- Mean stacking with rejection (mono and RGB)
- Combination of survivors for compacting and replacing methods
- Chunked and parallel processing
- Per-channel counters and statistics

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from stackreject import stack as stack_module
from stackreject.config import RejectionConfig, RejectionMethod, StackConfig
from stackreject.counters import RejectionCounters
from stackreject.stack import (
    MAX_PENDING_PER_WORKER,
    combine_samples,
    stack_mean_with_rejection,
    stack_rows,
)


def _config(method="winsorized", low=4.0, high=3.0, **kwargs):
    return StackConfig(rejection=RejectionConfig(method, low, high), **kwargs)


class TestStackMeanWithRejection:
    """Tests for mean stacking with per-pixel rejection."""

    def test_identical_frames(self):
        """Identical frames stack to the same value with every sample kept."""
        frames = [np.full((10, 10), 100, dtype=np.float32) for _ in range(5)]
        outcome = stack_mean_with_rejection(frames, _config("sigma", 3.0, 3.0))

        assert outcome.image.shape == (10, 10)
        assert np.allclose(outcome.image, 100)
        assert np.all(outcome.kept_count == 5)
        assert outcome.total_counters.total == 0

    def test_outlier_rejection(self, synthetic_frames):
        """A cosmic ray hit does not reach the stacked value."""
        frames = synthetic_frames(n_frames=10)
        frames[3][5, 4] = 10000.0

        outcome = stack_mean_with_rejection(frames, _config())

        assert outcome.image[5, 4] == pytest.approx(100.0, abs=2.0)
        assert outcome.kept_count[5, 4] <= 9
        assert outcome.total_counters.high >= 1

    def test_no_rejection_is_plain_mean(self, synthetic_frames):
        """The identity method reproduces the plain mean."""
        frames = synthetic_frames(n_frames=6)
        outcome = stack_mean_with_rejection(frames, _config("none", 0.0, 0.0))

        np.testing.assert_allclose(outcome.image, np.mean(frames, axis=0), rtol=1e-5)
        assert np.all(outcome.kept_count == 6)

    def test_rgb_frames(self, synthetic_frames):
        """Colour frames are stacked channel by channel."""
        frames = synthetic_frames(n_frames=8, channels=3)
        outcome = stack_mean_with_rejection(frames, _config())

        assert outcome.image.shape == (12, 10, 3)
        assert outcome.n_channels == 3
        assert len(outcome.counters) == 3
        assert len(outcome.rejection_fractions()) == 3

    def test_cube_input(self, synthetic_frames):
        """A cube with the frame axis first is accepted."""
        frames = synthetic_frames(n_frames=5)
        from_list = stack_mean_with_rejection(frames, _config())
        from_cube = stack_mean_with_rejection(np.stack(frames), _config())

        np.testing.assert_array_equal(from_list.image, from_cube.image)

    def test_zero_pixels_yield_zero(self):
        """Degenerate all-zero pixels give 0 with no contributing frame."""
        frames = [np.zeros((4, 4), dtype=np.float32) for _ in range(6)]
        outcome = stack_mean_with_rejection(frames, _config("sigma", 3.0, 3.0))

        assert np.all(outcome.image == 0)
        assert np.all(outcome.kept_count == 0)
        assert outcome.total_counters == RejectionCounters()

    def test_sigmedian_keeps_every_frame(self, synthetic_frames):
        """Replacement methods combine all frames."""
        frames = synthetic_frames(n_frames=7)
        frames[2][1, 1] = 5000.0
        outcome = stack_mean_with_rejection(frames, _config("sigmedian", 2.0, 2.0))

        assert np.all(outcome.kept_count == 7)
        assert outcome.image[1, 1] < 200.0

    def test_chunk_size_does_not_matter(self, synthetic_frames):
        """Row chunking is invisible in the result."""
        frames = synthetic_frames(n_frames=6)
        small = stack_mean_with_rejection(frames, _config(chunk_rows=1))
        large = stack_mean_with_rejection(frames, _config(chunk_rows=100))

        np.testing.assert_array_equal(small.image, large.image)
        assert small.counters == large.counters

    def test_parallel_matches_sequential(self, synthetic_frames):
        """Worker processes reduce to the same image and counters."""
        frames = synthetic_frames(n_frames=8, channels=3)
        for frame in frames[:2]:
            frame[::3, ::2] += 500.0

        sequential = stack_mean_with_rejection(frames, _config(chunk_rows=3, workers=1))
        parallel = stack_mean_with_rejection(frames, _config(chunk_rows=3, workers=2))

        np.testing.assert_array_equal(sequential.image, parallel.image)
        np.testing.assert_array_equal(sequential.kept_count, parallel.kept_count)
        assert sequential.counters == parallel.counters

    def test_parallel_chunks_in_flight_are_bounded(self, synthetic_frames, monkeypatch):
        """Chunk cubes are gathered as workers free up, not all upfront."""
        frames = synthetic_frames(n_frames=5, height=40)
        sequential = stack_mean_with_rejection(frames, _config(chunk_rows=1, workers=1))

        lock = threading.Lock()
        live = {"now": 0, "peak": 0}
        gather = stack_module._task_args
        work = stack_module._stack_chunk_wrapper

        def counting_task_args(*args):
            with lock:
                live["now"] += 1
                live["peak"] = max(live["peak"], live["now"])
            return gather(*args)

        def releasing_wrapper(args):
            try:
                return work(args)
            finally:
                with lock:
                    live["now"] -= 1

        # Threads share the counters, processes would not
        monkeypatch.setattr(stack_module, "ProcessPoolExecutor", ThreadPoolExecutor)
        monkeypatch.setattr(stack_module, "_task_args", counting_task_args)
        monkeypatch.setattr(stack_module, "_stack_chunk_wrapper", releasing_wrapper)

        parallel = stack_mean_with_rejection(frames, _config(chunk_rows=1, workers=2))

        assert live["peak"] <= MAX_PENDING_PER_WORKER * 2
        assert live["now"] == 0
        np.testing.assert_array_equal(parallel.image, sequential.image)
        assert parallel.counters == sequential.counters

    def test_logs_rejection_per_channel(self, synthetic_frames, caplog):
        """Rejected percentages are logged once per channel."""
        frames = synthetic_frames(n_frames=5, channels=3)
        with caplog.at_level(logging.INFO, logger="stackreject.stack"):
            stack_mean_with_rejection(frames, _config())

        messages = [r.getMessage() for r in caplog.records]
        for channel in range(3):
            assert any(m.startswith(f"Pixel rejection in channel #{channel}:") for m in messages)

    def test_statistics(self, synthetic_frames):
        """Summary statistics cover kept fraction and per-channel rates."""
        outcome = stack_mean_with_rejection(synthetic_frames(n_frames=5), _config())
        stats = outcome.statistics()

        assert 0.0 < stats["mean_kept_fraction"] <= 1.0
        assert "rejected_low_pct_ch0" in stats
        assert "rejected_high_pct_ch0" in stats

    def test_empty_list_raises(self):
        """Empty frame list should raise ValueError."""
        with pytest.raises(ValueError, match="Empty frame list"):
            stack_mean_with_rejection([])

    def test_single_frame_raises(self):
        """One frame cannot be stacked."""
        with pytest.raises(ValueError, match="At least 2 frames"):
            stack_mean_with_rejection([np.ones((4, 4), dtype=np.float32)])

    def test_shape_mismatch_raises(self):
        """Frames must share one shape."""
        frames = [np.ones((4, 4), dtype=np.float32), np.ones((4, 5), dtype=np.float32)]
        with pytest.raises(ValueError, match="Frame 1 has shape"):
            stack_mean_with_rejection(frames)

    def test_invalid_config_raises(self, synthetic_frames):
        """Configuration is validated before any work."""
        with pytest.raises(ValueError, match="chunk_rows"):
            stack_mean_with_rejection(synthetic_frames(n_frames=3), _config(chunk_rows=0))


class TestStackRows:
    """Tests for the per-chunk worker function."""

    def test_counters_are_local(self):
        """Each chunk returns its own accumulator."""
        cube = np.full((6, 2, 3), 50.0, dtype=np.float32)
        cube[0, 1, 2] = 900.0

        stacked, kept, counters = stack_rows(cube, RejectionConfig("sigma", 2.0, 2.0))

        assert stacked.shape == (2, 3)
        assert kept[1, 2] == 5
        assert stacked[1, 2] == pytest.approx(50.0)
        assert counters == RejectionCounters(0, 1)

    def test_kept_count_beyond_int16(self):
        """Kept counts hold stacks longer than 32767 frames."""
        cube = np.full((40000, 1, 2), 25.0, dtype=np.float32)

        stacked, kept, _ = stack_rows(cube, RejectionConfig("none", 0.0, 0.0))

        assert kept.dtype == np.int32
        assert np.all(kept == 40000)
        assert np.allclose(stacked, 25.0)


class TestCombineSamples:
    """Tests for the combination step."""

    def test_mean_of_survivors(self):
        """Only the first N' samples are averaged."""
        stack = np.array([1.0, 2.0, 3.0, 100.0], dtype=np.float32)
        assert combine_samples(stack, 3, RejectionMethod.SIGMA) == pytest.approx(2.0)

    def test_replacing_method_uses_whole_stack(self):
        """Sigmedian averages every sample."""
        stack = np.array([1.0, 2.0, 3.0, 2.0], dtype=np.float32)
        assert combine_samples(stack, 4, RejectionMethod.SIGMEDIAN) == pytest.approx(2.0)

    def test_nothing_kept(self):
        """No survivor gives 0."""
        assert combine_samples(np.zeros(4, dtype=np.float32), 0, RejectionMethod.SIGMA) == 0.0
