"""
Pytest configuration and fixtures.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import numpy as np
import pytest

from stackreject.io import write_fits


# Worked example of the generalized ESD test (22 samples, 5 outliers)
GESDT_EXAMPLE = [
    145, 125, 190, 135, 220, 130, 210, 3, 165, 165, 150,
    350, 170, 180, 195, 440, 215, 135, 410, 40, 140, 175,
]


@pytest.fixture
def gesdt_example():
    """Samples of the generalized ESD worked example, unsorted."""
    return np.array(GESDT_EXAMPLE, dtype=np.float32)


@pytest.fixture
def noisy_stack():
    """Create a pixel stack of Gaussian noise with optional outliers."""
    def _create(n=20, level=1000.0, noise=10.0, hot=(), cold=(), seed=42):
        """
        Create a 1D sample stack.

        ``hot`` and ``cold`` are values appended at the end of the stack,
        far above or below ``level``.
        """
        rng = np.random.default_rng(seed)
        base = rng.normal(level, noise, n - len(hot) - len(cold))
        stack = np.concatenate([base, np.asarray(hot, float), np.asarray(cold, float)])
        rng.shuffle(stack)
        return stack.astype(np.float32)

    return _create


@pytest.fixture
def synthetic_frames():
    """Create a list of noisy aligned frames."""
    def _create(n_frames=10, height=12, width=10, channels=None, level=100.0, noise=1.0, seed=7):
        rng = np.random.default_rng(seed)
        shape = (height, width) if channels is None else (height, width, channels)
        return [
            rng.normal(level, noise, shape).astype(np.float32)
            for _ in range(n_frames)
        ]

    return _create


@pytest.fixture
def fits_folder(tmp_path, synthetic_frames):
    """Write synthetic frames as FITS files in a temporary folder."""
    def _create(n_frames=6, **kwargs):
        folder = tmp_path / "aligned"
        folder.mkdir()
        for i, frame in enumerate(synthetic_frames(n_frames=n_frames, **kwargs)):
            write_fits(folder / f"frame_{i:03d}.fits", frame)
        return folder

    return _create
