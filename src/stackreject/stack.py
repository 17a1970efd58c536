"""
Mean stacking with per-pixel outlier rejection.

Walks every pixel location of an aligned frame stack, runs the configured
rejection kernel on the samples of that location and averages the
survivors. The image is processed in horizontal chunks of rows, which keeps
memory bounded and gives independent work units for parallel workers.

Each worker owns its scratch buffers and its rejection counters; the
counters are reduced per channel once every chunk is done.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from dataclasses import dataclass, field

import numpy as np

from .cli_output import create_progress_bar
from .config import RejectionConfig, RejectionMethod, StackConfig
from .counters import RejectionCounters
from .rejection import Rejector

logger = logging.getLogger(__name__)

# Default number of workers for parallel processing
# Use all available CPUs but leave one free for system
DEFAULT_WORKERS = max(1, os.cpu_count() - 1) if os.cpu_count() else 4

# Chunks submitted to the pool but not yet collected, per worker
MAX_PENDING_PER_WORKER = 2


@dataclass
class StackOutcome:
    """Result of a mean stack with rejection."""

    image: np.ndarray
    """Stacked image, (H, W) or (H, W, C), float32."""

    kept_count: np.ndarray
    """Number of samples combined per pixel, same shape as image, int32."""

    n_frames: int
    """Number of frames in the stack."""

    method: RejectionMethod
    """Rejection method used."""

    counters: list[RejectionCounters] = field(default_factory=list)
    """Rejected sample totals, one accumulator per channel."""

    @property
    def n_channels(self) -> int:
        """Number of colour channels."""
        return 1 if self.image.ndim == 2 else self.image.shape[2]

    @property
    def total_counters(self) -> RejectionCounters:
        """Rejected sample totals over all channels."""
        return RejectionCounters.reduce(self.counters)

    def rejection_fractions(self) -> list[tuple[float, float]]:
        """
        Low/high rejected fractions per channel.

        Returns
        -------
        list[tuple[float, float]]
            One (low, high) pair per channel, relative to pixels x frames.
        """
        n_samples = self.image.shape[0] * self.image.shape[1] * self.n_frames
        return [c.fractions(n_samples) for c in self.counters]

    def statistics(self) -> dict[str, float]:
        """Summary statistics for reports."""
        stats: dict[str, float] = {
            "mean_kept_fraction": float(np.mean(self.kept_count)) / self.n_frames,
            "min_kept": float(np.min(self.kept_count)),
            "rejected_low": float(self.total_counters.low),
            "rejected_high": float(self.total_counters.high),
        }
        for channel, (low, high) in enumerate(self.rejection_fractions()):
            stats[f"rejected_low_pct_ch{channel}"] = 100.0 * low
            stats[f"rejected_high_pct_ch{channel}"] = 100.0 * high
        return stats


def combine_samples(stack: np.ndarray, kept: int, method: RejectionMethod) -> float:
    """
    Combine the samples left by the rejection step into one pixel value.

    Parameters
    ----------
    stack : np.ndarray
        Sample stack after rejection.
    kept : int
        N' returned by the rejection step.
    method : RejectionMethod
        Method that produced the stack. Replacement methods keep every
        sample, so the whole stack is averaged.

    Returns
    -------
    float
        Unweighted mean of the surviving samples, 0.0 if none survived.
    """
    if method.replaces:
        return float(np.mean(stack, dtype=np.float64))
    if kept == 0:
        return 0.0
    return float(np.mean(stack[:kept], dtype=np.float64))


def stack_rows(
    cube: np.ndarray,
    config: RejectionConfig,
) -> tuple[np.ndarray, np.ndarray, RejectionCounters]:
    """
    Stack a block of rows with rejection.

    Parameters
    ----------
    cube : np.ndarray
        Samples with shape (n_frames, rows, width).
    config : RejectionConfig
        Rejection settings.

    Returns
    -------
    tuple[np.ndarray, np.ndarray, RejectionCounters]
        (stacked_rows, kept_count, counters) for this block.
    """
    n_frames, rows, width = cube.shape
    rejector = Rejector(config, n_frames)
    counters = RejectionCounters()

    stacked = np.zeros((rows, width), dtype=np.float32)
    kept_count = np.zeros((rows, width), dtype=np.int32)
    sample = np.empty(n_frames, dtype=np.float32)

    for y in range(rows):
        for x in range(width):
            sample[:] = cube[:, y, x]
            kept = rejector(sample, counters)
            kept_count[y, x] = kept
            stacked[y, x] = combine_samples(sample, kept, config.method)

    return stacked, kept_count, counters


def _stack_chunk_wrapper(args: tuple) -> tuple:
    """
    Wrapper for stack_rows to use with ProcessPoolExecutor.

    Parameters
    ----------
    args : tuple
        (row_start, channel, cube, config) tuple.

    Returns
    -------
    tuple
        (row_start, channel, stacked_rows, kept_count, counters)
    """
    row_start, channel, cube, config = args
    stacked, kept_count, counters = stack_rows(cube, config)
    return row_start, channel, stacked, kept_count, counters


def _task_args(
    frames: list[np.ndarray],
    task: tuple[int, int, int],
    config: RejectionConfig,
) -> tuple:
    """Gather the (n_frames, rows, width) cube of one chunk into worker arguments."""
    row_start, channel, row_end = task
    cube = np.stack(
        [f[row_start:row_end, :, channel] for f in frames], axis=0
    ).astype(np.float32, copy=False)
    return row_start, channel, cube, config


def _prepare_frames(frames: list[np.ndarray] | np.ndarray) -> list[np.ndarray]:
    """Return frames as a list of (H, W, C) arrays, checking shapes."""
    if isinstance(frames, np.ndarray):
        frames = [frames[i] for i in range(frames.shape[0])]

    if len(frames) == 0:
        raise ValueError("Empty frame list")
    if len(frames) < 2:
        raise ValueError(f"At least 2 frames are required for stacking, got {len(frames)}")

    shape = frames[0].shape
    if len(shape) not in (2, 3):
        raise ValueError(f"Frames must be 2D or (H, W, C), got shape {shape}")

    prepared = []
    for i, frame in enumerate(frames):
        if frame.shape != shape:
            raise ValueError(f"Frame {i} has shape {frame.shape}, expected {shape}")
        prepared.append(frame if frame.ndim == 3 else frame[:, :, np.newaxis])
    return prepared


def stack_mean_with_rejection(
    frames: list[np.ndarray] | np.ndarray,
    config: StackConfig | None = None,
) -> StackOutcome:
    """
    Mean-stack aligned frames with per-pixel outlier rejection.

    Parameters
    ----------
    frames : list[np.ndarray] or np.ndarray
        Aligned frames, each (H, W) or (H, W, C), or a cube with the frame
        axis first.
    config : StackConfig, optional
        Rejection and chunking settings. Uses defaults if not provided.

    Returns
    -------
    StackOutcome
        Stacked image, kept-count map and per-channel rejection counters.

    Notes
    -----
    Memory-efficient: only ``chunk_rows`` rows of every frame are gathered
    into a cube at a time. With ``workers > 1`` the chunks are processed by
    a pool of worker processes, with at most ``MAX_PENDING_PER_WORKER``
    cubes per worker submitted and not yet collected; results do not depend on the number of
    workers because every pixel is processed independently.
    """
    if config is None:
        config = StackConfig()
    config.validate()

    frame_list = _prepare_frames(frames)
    n_frames = len(frame_list)
    height, width, channels = frame_list[0].shape
    rejection = config.rejection

    logger.info(
        "Stacking %d frames (%dx%d, %d channel(s)) with %s rejection (low=%.3g, high=%.3g), chunk_rows=%d",
        n_frames, width, height, channels, rejection.method.value,
        rejection.low, rejection.high, config.chunk_rows,
    )

    tasks = []
    for channel in range(channels):
        for row_start in range(0, height, config.chunk_rows):
            row_end = min(row_start + config.chunk_rows, height)
            tasks.append((row_start, channel, row_end))

    stacked = np.zeros((height, width, channels), dtype=np.float32)
    kept_count = np.zeros((height, width, channels), dtype=np.int32)
    chunk_counters: list[list[RejectionCounters]] = [[] for _ in range(channels)]

    def _store(result: tuple) -> None:
        row_start, channel, rows, kept, counters = result
        row_end = row_start + rows.shape[0]
        stacked[row_start:row_end, :, channel] = rows
        kept_count[row_start:row_end, :, channel] = kept
        chunk_counters[channel].append(counters)

    workers = config.workers if config.workers is not None else DEFAULT_WORKERS
    pbar = create_progress_bar(
        total=len(tasks),
        desc=f"Stacking ({workers} worker{'s' if workers > 1 else ''})",
        unit="chunk",
        disable=not config.show_progress,
    )

    with pbar:
        if workers <= 1 or len(tasks) < 2:
            for i, task in enumerate(tasks):
                if i % 10 == 0:
                    logger.debug(
                        "Processing chunk %d/%d (rows %d-%d, channel %d)",
                        i + 1, len(tasks), task[0], task[2] - 1, task[1],
                    )
                _store(_stack_chunk_wrapper(_task_args(frame_list, task, rejection)))
                pbar.update(1)
        else:
            with ProcessPoolExecutor(max_workers=workers) as executor:
                # At most MAX_PENDING_PER_WORKER cubes per worker are in flight
                remaining = iter(tasks)
                pending = set()
                for task in remaining:
                    pending.add(executor.submit(
                        _stack_chunk_wrapper, _task_args(frame_list, task, rejection)
                    ))
                    if len(pending) >= MAX_PENDING_PER_WORKER * workers:
                        break
                while pending:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        _store(future.result())
                        pbar.update(1)
                        task = next(remaining, None)
                        if task is not None:
                            pending.add(executor.submit(
                                _stack_chunk_wrapper, _task_args(frame_list, task, rejection)
                            ))

    counters = [RejectionCounters.reduce(c) for c in chunk_counters]

    n_samples = height * width * n_frames
    for channel, c in enumerate(counters):
        low, high = c.fractions(n_samples)
        logger.info(
            "Pixel rejection in channel #%d: %.3f%% - %.3f%%",
            channel, 100.0 * low, 100.0 * high,
        )

    if channels == 1:
        stacked = stacked[:, :, 0]
        kept_count = kept_count[:, :, 0]

    logger.info(
        "Stack complete. Mean contributing frames: %.1f, min: %d, max: %d",
        np.mean(kept_count),
        np.min(kept_count),
        np.max(kept_count),
    )

    return StackOutcome(
        image=stacked,
        kept_count=kept_count,
        n_frames=n_frames,
        method=rejection.method,
        counters=counters,
    )
