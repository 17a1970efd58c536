"""
Configuration dataclasses for stackreject.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RejectionMethod(Enum):
    """Pixel rejection algorithms available to the stacking engine."""

    NONE = "none"  # Keep every sample
    PERCENTILE = "percentile"  # Relative deviation from the median
    SIGMA = "sigma"  # Iterative sigma clipping
    SIGMEDIAN = "sigmedian"  # Sigma clipping, outliers replaced by the median
    WINSORIZED = "winsorized"  # Sigma clipping with a Winsorized sigma
    LINEARFIT = "linearfit"  # Residuals of a line fitted to the sorted stack
    GESDT = "gesdt"  # Generalized extreme Studentized deviate test

    @property
    def replaces(self) -> bool:
        """
        True when rejected samples are overwritten instead of removed.

        The combination step must then average all ``nb_frames`` samples
        rather than the first N' returned by the dispatcher.
        """
        return self is RejectionMethod.SIGMEDIAN


@dataclass
class RejectionConfig:
    """
    Configuration of the per-pixel rejection engine.

    The meaning of ``low`` and ``high`` depends on the method:

    - percentile: maximum relative deviation below / above the median
    - sigma, sigmedian, winsorized, linearfit: sigma multipliers
    - gesdt: ``low`` is the expected fraction of outliers (sets the number
      of test iterations), ``high`` is the significance level alpha
    """

    method: RejectionMethod = RejectionMethod.WINSORIZED
    """Rejection algorithm."""

    low: float = 4.0
    """Low-side threshold (see class docstring)."""

    high: float = 3.0
    """High-side threshold (see class docstring)."""

    def __post_init__(self) -> None:
        if isinstance(self.method, str):
            self.method = RejectionMethod(self.method.lower())

    def validate(self) -> None:
        """Validate configuration parameters."""
        if self.method is RejectionMethod.NONE:
            return
        if self.method is RejectionMethod.GESDT:
            if not 0.0 < self.low < 1.0:
                raise ValueError(f"gesdt outlier fraction (low) must be in (0, 1), got {self.low}")
            if not 0.0 < self.high < 1.0:
                raise ValueError(f"gesdt significance (high) must be in (0, 1), got {self.high}")
            return
        if self.low <= 0:
            raise ValueError(f"low threshold must be positive, got {self.low}")
        if self.high <= 0:
            raise ValueError(f"high threshold must be positive, got {self.high}")


@dataclass
class StackConfig:
    """
    Configuration for a stacking run with pixel rejection.

    All parameters are explicitly documented and have sensible defaults.
    """

    rejection: RejectionConfig = field(default_factory=RejectionConfig)
    """Per-pixel rejection settings."""

    chunk_rows: int = 64
    """Number of image rows handed to a worker at a time."""

    workers: int | None = 1
    """Number of parallel worker processes. None = auto-detect (CPU count - 1)."""

    show_progress: bool = False
    """Display a progress bar over row chunks."""

    def validate(self) -> None:
        """Validate configuration parameters."""
        self.rejection.validate()
        if self.chunk_rows < 1:
            raise ValueError(f"chunk_rows must be >= 1, got {self.chunk_rows}")
        if self.workers is not None and self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")


@dataclass
class StackResult:
    """
    Record of a stacking run, used by the report writers.

    Contains all information needed to understand and reproduce the result.
    """

    # --- Inputs ---
    inputs: list[str] = field(default_factory=list)
    """FITS files that were stacked."""

    n_frames: int = 0
    """Number of frames in the stack."""

    shape: tuple[int, ...] = ()
    """Shape of the stacked image."""

    # --- Rejection ---
    rejected_low: list[int] = field(default_factory=list)
    """Low-side rejected sample count per channel."""

    rejected_high: list[int] = field(default_factory=list)
    """High-side rejected sample count per channel."""

    # --- Outputs ---
    outputs: dict[str, str] = field(default_factory=dict)
    """Map of output type to path (e.g., 'master' -> '/path/to/master.fits')."""

    # --- Statistics ---
    stats: dict[str, float] = field(default_factory=dict)
    """Computed statistics (e.g., 'mean_kept_fraction', 'duration_s')."""

    # --- Configuration ---
    config: StackConfig | None = None
    """Configuration used for this run."""

    # --- Metadata ---
    version: str = ""
    """Library version."""

    timestamp: str = ""
    """ISO format timestamp of run completion."""

    platform: str = ""
    """Platform information."""
