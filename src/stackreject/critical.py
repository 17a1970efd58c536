"""
Critical values for the generalized extreme Studentized deviate test.

The GESDT compares, at iteration i, the Grubbs statistic of the remaining
n = nb_frames - i samples with

    lambda_i = (n - 1) t / sqrt(n (n - 2 + t^2))

where t is the 1 - alpha / (2n) quantile of Student's t distribution with
n - 2 degrees of freedom (Rosner, 1983). The table depends only on the stack
size, the significance level and the number of iterations, so it is built
once per stacking run.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
import math

import numpy as np
from scipy import stats

logger = logging.getLogger(__name__)

# Iterative rejection never goes below this many samples
MIN_REMAINING = 4


def gesdt_budget(nb_frames: int, fraction: float) -> int:
    """
    Number of GESDT candidate iterations for a stack.

    Parameters
    ----------
    nb_frames : int
        Number of samples per pixel.
    fraction : float
        Expected fraction of outliers.

    Returns
    -------
    int
        floor(nb_frames * fraction), clamped so that at least
        MIN_REMAINING samples survive.
    """
    budget = int(math.floor(nb_frames * fraction))
    return max(0, min(budget, nb_frames - MIN_REMAINING))


def gesdt_critical_values(
    nb_frames: int,
    alpha: float,
    max_outliers: int,
) -> np.ndarray:
    """
    Compute the GESDT critical value for each candidate iteration.

    Parameters
    ----------
    nb_frames : int
        Number of samples per pixel.
    alpha : float
        Significance level, in (0, 1).
    max_outliers : int
        Number of iterations (candidate outliers) to prepare.

    Returns
    -------
    np.ndarray
        float64 array of length ``max_outliers``; entry i is the critical
        value for a sample of size nb_frames - i.

    Raises
    ------
    ValueError
        If alpha is outside (0, 1) or an iteration would test fewer than
        three samples.
    """
    if not 0.0 < alpha < 1.0:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    if max_outliers < 0:
        raise ValueError(f"max_outliers must be >= 0, got {max_outliers}")
    if max_outliers == 0:
        return np.zeros(0, dtype=np.float64)

    sizes = nb_frames - np.arange(max_outliers, dtype=np.float64)
    if sizes[-1] < 3:
        raise ValueError(
            f"Cannot test {max_outliers} outliers in a stack of {nb_frames} frames"
        )

    p = 1.0 - alpha / (2.0 * sizes)
    t_dist = stats.t.ppf(p, sizes - 2.0)
    critical = (sizes - 1.0) * t_dist / np.sqrt(sizes * (sizes - 2.0 + t_dist**2))

    logger.debug(
        "GESDT critical values for %d frames, alpha=%.3f: %s",
        nb_frames, alpha, np.array2string(critical, precision=4),
    )
    return critical
