"""
stackreject - Per-pixel outlier rejection for astronomical image stacking.

Classifies, for every pixel location of an aligned stack, which frame
samples are contaminated (cosmic rays, satellite trails, hot or cold pixels)
and averages the survivors.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com

Example
-------
>>> import numpy as np
>>> from stackreject import RejectionConfig, RejectionCounters, apply_rejection
>>> samples = np.array([10, 11, 9, 10, 12, 10, 1000], dtype=np.float32)
>>> counters = RejectionCounters()
>>> kept = apply_rejection(samples, RejectionConfig("sigma", 2.0, 2.0), counters)
>>> samples[:kept], counters.high

Example (whole image)
---------------------
>>> from stackreject import StackConfig, stack_mean_with_rejection
>>> config = StackConfig(rejection=RejectionConfig("winsorized", 4.0, 3.0))
>>> outcome = stack_mean_with_rejection(frames, config)
>>> outcome.image, outcome.rejection_fractions()
"""

from .config import (
    RejectionConfig,
    RejectionMethod,
    StackConfig,
    StackResult,
)
from .utils import __version__

# Numeric primitives
from .statistics import linear_fit, max_standardized_deviation, median, stddev

# Counters
from .counters import RejectionCounters

# GESDT critical values
from .critical import MIN_REMAINING, gesdt_budget, gesdt_critical_values

# Rejection engine
from .rejection import (
    Outlier,
    RejectionScratch,
    Rejector,
    apply_rejection,
    confirm_outliers,
    generalized_esd,
)

# Stacking
from .stack import StackOutcome, combine_samples, stack_mean_with_rejection, stack_rows

# I/O
from .io import list_frames, read_fits, read_header, write_fits

# Entry point
from .cli import run_stack

__all__ = [
    # Version
    "__version__",
    # Config
    "RejectionConfig",
    "RejectionMethod",
    "StackConfig",
    "StackResult",
    # Statistics
    "median",
    "stddev",
    "linear_fit",
    "max_standardized_deviation",
    # Counters
    "RejectionCounters",
    # Critical values
    "MIN_REMAINING",
    "gesdt_budget",
    "gesdt_critical_values",
    # Rejection
    "Outlier",
    "RejectionScratch",
    "Rejector",
    "apply_rejection",
    "confirm_outliers",
    "generalized_esd",
    # Stacking
    "StackOutcome",
    "combine_samples",
    "stack_mean_with_rejection",
    "stack_rows",
    # I/O
    "list_frames",
    "read_fits",
    "read_header",
    "write_fits",
    # Entry point
    "run_stack",
]
