"""
Numeric primitives used by the rejection kernels.

All functions operate on flat sample arrays for a single pixel location
and never modify their input.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import numpy as np


def median(values: np.ndarray) -> float:
    """
    Median of a sample vector.

    Parameters
    ----------
    values : np.ndarray
        1D sample array (at least one element).

    Returns
    -------
    float
        Middle order statistic. For an even number of samples this is the
        mean of the two middle values.
    """
    return float(np.median(values))


def stddev(values: np.ndarray) -> float:
    """
    Sample standard deviation (Bessel-corrected, divisor n - 1).

    Parameters
    ----------
    values : np.ndarray
        1D sample array.

    Returns
    -------
    float
        Standard deviation, or 0.0 for fewer than two samples.

    Notes
    -----
    Accumulation is done in float64 even for float32 stacks, which keeps
    the estimate stable for stacks as small as four samples.
    """
    if values.size < 2:
        return 0.0
    return float(np.std(values, ddof=1, dtype=np.float64))


def linear_fit(x: np.ndarray, y: np.ndarray) -> tuple[float, float]:
    """
    Ordinary least-squares line fit ``y = slope * x + intercept``.

    Parameters
    ----------
    x : np.ndarray
        Abscissa. For rejection this is the rank index of the sorted stack.
    y : np.ndarray
        Ordinate (sorted sample values).

    Returns
    -------
    tuple[float, float]
        (slope, intercept). A constant abscissa gives slope 0 and the mean
        of ``y`` as intercept.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    mean_x = x.mean()
    mean_y = y.mean()
    dx = x - mean_x

    sxx = float(np.dot(dx, dx))
    if sxx == 0.0:
        return 0.0, float(mean_y)

    slope = float(np.dot(dx, y - mean_y)) / sxx
    intercept = float(mean_y) - slope * float(mean_x)
    return slope, intercept


def max_standardized_deviation(values: np.ndarray) -> tuple[float, int]:
    """
    Largest standardized residual of a sorted sample (Grubbs statistic).

    Parameters
    ----------
    values : np.ndarray
        1D array sorted ascending, so only the two ends can be extreme.

    Returns
    -------
    tuple[float, int]
        (G, index) where G = max(mean - min, max - mean) / stddev and index
        is the position of the extreme sample (0 or len - 1). The low end
        wins ties. G is 0 when the sample has no spread.
    """
    mean = float(np.mean(values, dtype=np.float64))
    sd = stddev(values)

    max_index = 0
    max_deviation = mean - float(values[0])
    d = float(values[-1]) - mean
    if d > max_deviation:
        max_deviation = d
        max_index = values.size - 1

    if sd == 0.0:
        return 0.0, max_index
    return max_deviation / sd, max_index
