"""
Per-pixel outlier rejection kernels.

Given the samples contributed by every aligned frame at one pixel location,
decide which ones are contaminated (cosmic rays, satellite trails, residual
misalignment, hot or cold pixels) and exclude them before the survivors are
combined.

Supported methods:
- none: keep everything
- percentile: relative deviation from the median, single pass
- sigma: iterative sigma clipping around the median
- sigmedian: sigma clipping where outliers are replaced by the median
- winsorized: sigma clipping with a Winsorized, bias-corrected sigma
- linearfit: clipping of residuals to a line fitted on the sorted stack
- gesdt: generalized extreme Studentized deviate test

The sample stack is edited in place: compacting methods move the survivors
to the front and return their count N', sigmedian overwrites outliers and
keeps the length.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import numpy as np

from .config import RejectionConfig, RejectionMethod
from .counters import RejectionCounters
from .critical import MIN_REMAINING, gesdt_budget, gesdt_critical_values
from .statistics import linear_fit, max_standardized_deviation, median, stddev

logger = logging.getLogger(__name__)

# Winsorization clamps to median +/- WINSOR_CLAMP * sigma
WINSOR_CLAMP = 1.5
# Corrects the sigma underestimate of a Winsorized sample
WINSOR_BIAS = 1.134
# Relative change of sigma below which Winsorization has converged
WINSOR_TOLERANCE = 0.0005
# Safety bound for the loops that have no natural iteration limit
MAX_CONVERGENCE_ITERATIONS = 100

_EPS = np.finfo(np.float64).eps


@dataclass
class RejectionScratch:
    """
    Work buffers reused across pixel locations.

    One instance belongs to one worker: kernels overwrite the buffers, so
    a scratch must never be shared by concurrent calls.

    Attributes
    ----------
    rejected : np.ndarray
        Per-sample flags: -1 low-side, 0 kept, +1 high-side.
    w_stack : np.ndarray or None
        Working copy Winsorized in place (winsorized only).
    xf, yf : np.ndarray or None
        Rank index and sorted values for the line fit (linearfit only).
    """

    rejected: np.ndarray
    w_stack: np.ndarray | None = None
    xf: np.ndarray | None = None
    yf: np.ndarray | None = None

    @classmethod
    def for_method(cls, method: RejectionMethod, nb_frames: int) -> RejectionScratch:
        """Allocate exactly the buffers ``method`` needs for ``nb_frames`` samples."""
        scratch = cls(rejected=np.zeros(nb_frames, dtype=np.int8))
        if method is RejectionMethod.WINSORIZED:
            scratch.w_stack = np.empty(nb_frames, dtype=np.float64)
        elif method is RejectionMethod.LINEARFIT:
            scratch.xf = np.arange(nb_frames, dtype=np.float64)
            scratch.yf = np.empty(nb_frames, dtype=np.float64)
        return scratch

    @property
    def size(self) -> int:
        """Number of samples the buffers can hold."""
        return self.rejected.size

    def check(self, method: RejectionMethod, nb_frames: int) -> None:
        """Raise ValueError if the buffers cannot serve ``method`` on ``nb_frames`` samples."""
        if self.size < nb_frames:
            raise ValueError(f"Scratch holds {self.size} samples, stack has {nb_frames}")
        if method is RejectionMethod.WINSORIZED:
            if self.w_stack is None or self.w_stack.size < nb_frames:
                raise ValueError("winsorized rejection needs a w_stack buffer")
        elif method is RejectionMethod.LINEARFIT:
            if self.xf is None or self.yf is None or self.xf.size < nb_frames:
                raise ValueError("linearfit rejection needs xf/yf buffers")


@dataclass
class Outlier:
    """One GESDT candidate: the extreme sample removed at one iteration."""

    value: float
    index: int  # position in the sorted stack
    significant: bool  # G exceeded the critical value of its iteration
    confirmed: bool = False
    side: int = 0  # -1 cold (below median), +1 hot


def _compact(stack: np.ndarray, n: int, flags: np.ndarray) -> int:
    """Move the unflagged samples to the front of the stack, keeping their order."""
    keep = flags[:n] == 0
    kept = int(np.count_nonzero(keep))
    if kept != n:
        stack[:kept] = stack[:n][keep]
    return kept


def _apply_floor(flags: np.ndarray, n: int) -> None:
    """Cancel rejections that would leave fewer than MIN_REMAINING samples."""
    budget = max(n - MIN_REMAINING, 0)
    hits = np.flatnonzero(flags[:n])
    if hits.size > budget:
        flags[hits[budget:]] = 0


def _count(flags: np.ndarray, n: int) -> tuple[int, int]:
    return int(np.count_nonzero(flags[:n] < 0)), int(np.count_nonzero(flags[:n] > 0))


def _sigma_flags(
    values: np.ndarray,
    flags: np.ndarray,
    center: float,
    sigma: float,
    low: float,
    high: float,
) -> None:
    """Flag samples further than low/high * sigma below/above ``center``."""
    out = flags[: values.size]
    out[:] = 0
    out[center - values > low * sigma] = -1
    out[values - center > high * sigma] = 1


def _reject_percentile(stack, n, config, scratch, critical_values):
    values = stack[:n].astype(np.float64)
    med = median(values)
    if med == 0.0:
        return 0, 0, 0

    flags = scratch.rejected
    flags[:n] = 0
    flags[:n][(med - values) / med > config.low] = -1
    flags[:n][(values - med) / med > config.high] = 1

    low, high = _count(flags, n)
    return _compact(stack, n, flags), low, high


def _reject_sigma(stack, n, config, scratch, critical_values):
    med = median(stack[:n])
    if med == 0.0:
        return 0, 0, 0

    flags = scratch.rejected
    low_total = high_total = 0
    first = True
    while True:
        values = stack[:n].astype(np.float64)
        sigma = stddev(values)
        if not first:
            med = median(values)
        first = False

        _sigma_flags(values, flags, med, sigma, config.low, config.high)
        _apply_floor(flags, n)
        low, high = _count(flags, n)
        low_total += low
        high_total += high

        kept = _compact(stack, n, flags)
        changed = kept != n
        n = kept
        if not (changed and n > 3):
            break
    return n, low_total, high_total


def _reject_sigmedian(stack, n, config, scratch, critical_values):
    flags = scratch.rejected
    low_total = high_total = 0
    for _ in range(MAX_CONVERGENCE_ITERATIONS):
        values = stack[:n].astype(np.float64)
        sigma = stddev(values)
        med = median(values)

        _sigma_flags(values, flags, med, sigma, config.low, config.high)
        low, high = _count(flags, n)
        if low + high == 0:
            break
        low_total += low
        high_total += high
        stack[:n][flags[:n] != 0] = med
    return n, low_total, high_total


def _winsorized_sigma(values: np.ndarray, work: np.ndarray) -> tuple[float, float]:
    """
    Robust (median, sigma) of ``values`` by iterated Winsorization.

    ``work`` receives a copy of ``values`` that is clamped in place until
    the relative change of sigma drops below WINSOR_TOLERANCE. A sample
    without spread converges immediately.
    """
    sigma = stddev(values)
    med = median(values)
    work[:] = values
    for _ in range(MAX_CONVERGENCE_ITERATIONS):
        np.clip(work, med - WINSOR_CLAMP * sigma, med + WINSOR_CLAMP * sigma, out=work)
        sigma0 = sigma
        med = median(work)
        sigma = WINSOR_BIAS * stddev(work)
        if sigma0 == 0.0 or abs(sigma - sigma0) <= sigma0 * WINSOR_TOLERANCE:
            break
    return med, sigma


def _reject_winsorized(stack, n, config, scratch, critical_values):
    flags = scratch.rejected
    low_total = high_total = 0
    while True:
        values = stack[:n].astype(np.float64)
        med, sigma = _winsorized_sigma(values, scratch.w_stack[:n])

        # Test the original samples against the Winsorized estimate
        _sigma_flags(values, flags, med, sigma, config.low, config.high)
        _apply_floor(flags, n)
        low, high = _count(flags, n)
        low_total += low
        high_total += high

        kept = _compact(stack, n, flags)
        changed = kept != n
        n = kept
        if not (changed and n > 3):
            break
    return n, low_total, high_total


def _reject_linearfit(stack, n, config, scratch, critical_values):
    flags = scratch.rejected
    low_total = high_total = 0
    while True:
        stack[:n].sort()
        xf = scratch.xf[:n]
        yf = scratch.yf[:n]
        yf[:] = stack[:n]

        slope, intercept = linear_fit(xf, yf)
        residual = yf - (slope * xf + intercept)
        sigma = float(np.mean(np.abs(residual)))

        flags[:n] = 0
        # Residuals at round-off level mean the sorted stack is already a line
        if sigma > 64 * _EPS * max(1.0, float(np.max(np.abs(yf)))):
            flags[:n][-residual > config.low * sigma] = -1
            flags[:n][residual > config.high * sigma] = 1
        _apply_floor(flags, n)
        low, high = _count(flags, n)
        low_total += low
        high_total += high

        kept = _compact(stack, n, flags)
        changed = kept != n
        n = kept
        if not (changed and n > 3):
            break
    return n, low_total, high_total


def generalized_esd(
    sorted_values: np.ndarray,
    max_outliers: int,
    critical_values: np.ndarray,
) -> list[Outlier]:
    """
    Generate GESDT outlier candidates.

    At each iteration the Grubbs statistic of the remaining samples is
    compared with the critical value of that iteration, and the most extreme
    sample is removed whether or not it was significant.

    Parameters
    ----------
    sorted_values : np.ndarray
        Samples sorted ascending. Not modified.
    max_outliers : int
        Number of iterations to run.
    critical_values : np.ndarray
        Critical value per iteration (at least ``max_outliers`` entries).

    Returns
    -------
    list[Outlier]
        Candidates in discovery order. ``index`` refers to ``sorted_values``.
    """
    # The remaining samples are always a contiguous slice of the sorted array
    lo, hi = 0, sorted_values.size
    candidates = []
    for it in range(max_outliers):
        if hi - lo < 3:
            break
        g, idx = max_standardized_deviation(sorted_values[lo:hi])
        index = lo + idx
        candidates.append(
            Outlier(
                value=float(sorted_values[index]),
                index=index,
                significant=bool(g > critical_values[it]),
            )
        )
        if idx == 0:
            lo += 1
        else:
            hi -= 1
    return candidates


def confirm_outliers(candidates: list[Outlier], center: float) -> tuple[int, int]:
    """
    Confirm GESDT candidates and classify them as cold or hot.

    The number of outliers is the largest iteration whose statistic was
    significant: every candidate up to that one is confirmed, including
    earlier candidates that were not significant on their own.

    Parameters
    ----------
    candidates : list[Outlier]
        Output of :func:`generalized_esd`, updated in place.
    center : float
        Median of the full stack; candidates below it are cold.

    Returns
    -------
    tuple[int, int]
        (n_cold, n_hot) confirmed outliers.
    """
    last = -1
    for i, candidate in enumerate(candidates):
        if candidate.significant:
            last = i

    n_cold = n_hot = 0
    for candidate in candidates[: last + 1]:
        candidate.confirmed = True
        if candidate.value < center:
            candidate.side = -1
            n_cold += 1
        else:
            candidate.side = 1
            n_hot += 1
    return n_cold, n_hot


def _reject_gesdt(stack, n, config, scratch, critical_values):
    stack[:n].sort()
    med = median(stack[:n])
    budget = min(gesdt_budget(n, config.low), len(critical_values))

    candidates = generalized_esd(stack[:n], budget, critical_values)
    low, high = confirm_outliers(candidates, med)

    flags = scratch.rejected
    flags[:n] = 0
    for candidate in candidates:
        if candidate.confirmed:
            flags[candidate.index] = candidate.side
    return _compact(stack, n, flags), low, high


_KERNELS: dict[RejectionMethod, Callable[..., tuple[int, int, int]]] = {
    RejectionMethod.PERCENTILE: _reject_percentile,
    RejectionMethod.SIGMA: _reject_sigma,
    RejectionMethod.SIGMEDIAN: _reject_sigmedian,
    RejectionMethod.WINSORIZED: _reject_winsorized,
    RejectionMethod.LINEARFIT: _reject_linearfit,
    RejectionMethod.GESDT: _reject_gesdt,
}


def apply_rejection(
    stack: np.ndarray,
    config: RejectionConfig,
    counters: RejectionCounters,
    scratch: RejectionScratch | None = None,
    critical_values: np.ndarray | None = None,
) -> int:
    """
    Reject outliers from the samples of one pixel location.

    Parameters
    ----------
    stack : np.ndarray
        1D float array of the ``nb_frames`` samples, edited in place.
    config : RejectionConfig
        Method and thresholds. Not validated here (see :class:`Rejector`).
    counters : RejectionCounters
        Accumulator incremented with the low/high rejections of this call.
    scratch : RejectionScratch, optional
        Work buffers sized for the stack. Allocated when omitted.
    critical_values : np.ndarray, optional
        GESDT critical values; computed from ``config`` when omitted.

    Returns
    -------
    int
        N', the number of samples to combine. For compacting methods the
        survivors occupy ``stack[:N']``. For sigmedian N' always equals
        ``nb_frames`` and outliers have been overwritten with the median.

    Notes
    -----
    Percentile and sigma clipping treat a zero median as a degenerate pixel:
    0 is returned and the counters are left unchanged. The caller should
    then produce no value for this pixel.

    Iterative methods never reject more samples in a pass than would leave
    fewer than four, and keep looping while a pass rejected something and
    more than three samples remain.
    """
    nb_frames = stack.shape[0]
    method = config.method
    if method is RejectionMethod.NONE or nb_frames == 0:
        return nb_frames

    if scratch is None:
        scratch = RejectionScratch.for_method(method, nb_frames)
    else:
        scratch.check(method, nb_frames)

    if method is RejectionMethod.GESDT and critical_values is None:
        critical_values = gesdt_critical_values(
            nb_frames, config.high, gesdt_budget(nb_frames, config.low)
        )

    kept, low, high = _KERNELS[method](stack, nb_frames, config, scratch, critical_values)
    counters.add(low, high)
    return kept


class Rejector:
    """
    Rejection strategy bound to a stack size.

    Validates the configuration once, owns the scratch buffers its method
    needs and, for GESDT, the table of critical values. Create one per
    worker.

    Parameters
    ----------
    config : RejectionConfig
        Method and thresholds.
    nb_frames : int
        Number of samples per pixel location.

    Examples
    --------
    >>> samples = np.array([10, 11, 9, 10, 12, 10, 9, 11, 10, 1000], dtype=np.float32)
    >>> rejector = Rejector(RejectionConfig("sigma", 3.0, 3.0), nb_frames=10)
    >>> counters = RejectionCounters()
    >>> kept = rejector(samples, counters)
    >>> value = samples[:kept].mean()
    """

    def __init__(self, config: RejectionConfig, nb_frames: int):
        config.validate()
        if nb_frames < 1:
            raise ValueError(f"nb_frames must be >= 1, got {nb_frames}")

        self.config = config
        self.nb_frames = nb_frames
        self.scratch = RejectionScratch.for_method(config.method, nb_frames)
        self.critical_values: np.ndarray | None = None

        if config.method is RejectionMethod.GESDT:
            budget = gesdt_budget(nb_frames, config.low)
            self.critical_values = gesdt_critical_values(nb_frames, config.high, budget)
            logger.debug("GESDT: %d candidate iterations for %d frames", budget, nb_frames)

    @property
    def method(self) -> RejectionMethod:
        """Rejection method of this strategy."""
        return self.config.method

    def __call__(self, stack: np.ndarray, counters: RejectionCounters) -> int:
        """Run :func:`apply_rejection` on one pixel stack; returns N'."""
        if stack.shape[0] != self.nb_frames:
            raise ValueError(f"Expected {self.nb_frames} samples, got {stack.shape[0]}")
        return apply_rejection(
            stack,
            self.config,
            counters,
            scratch=self.scratch,
            critical_values=self.critical_values,
        )
