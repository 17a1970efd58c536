"""
FITS I/O for stacking inputs and outputs.

Handles:
- Frame discovery in a folder
- FITS reading with BZERO/BSCALE applied
- Writing the stacked master

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from astropy.io import fits

logger = logging.getLogger(__name__)


def list_frames(
    folder: str | Path,
    pattern: str = "*.fit*",
) -> list[Path]:
    """
    Discover FITS frames in a folder.

    Parameters
    ----------
    folder : str or Path
        Folder containing the aligned frames.
    pattern : str, default "*.fit*"
        Glob pattern (matches .fit and .fits).

    Returns
    -------
    list[Path]
        Sorted list of frame paths.
    """
    folder = Path(folder)
    if not folder.is_dir():
        raise ValueError(f"Not a directory: {folder}")

    frames = sorted(p for p in folder.glob(pattern) if p.is_file())
    logger.info("Discovered %d frames in %s", len(frames), folder.name)
    return frames


def read_fits(
    path: str | Path,
    dtype: np.dtype = np.float32,
) -> np.ndarray:
    """
    Read the primary image of a FITS file.

    Parameters
    ----------
    path : str or Path
        Path to the FITS file.
    dtype : np.dtype, default np.float32
        Output data type. Float32 is recommended for processing.

    Returns
    -------
    np.ndarray
        Image data, (H, W) for mono frames. Colour frames stored as
        (C, H, W) are returned as (H, W, C).

    Notes
    -----
    astropy applies BZERO/BSCALE when reading, so unsigned 16-bit data
    stored with BZERO = 32768 comes back as linear ADU in [0, 65535].
    """
    with fits.open(path) as hdul:
        data = hdul[0].data
        if data is None:
            raise ValueError(f"No image data in primary HDU: {path}")
        data = data.astype(dtype)

    if data.ndim == 3:
        data = np.moveaxis(data, 0, -1)
    return data


def read_header(path: str | Path) -> fits.Header:
    """
    Read FITS header without loading data.

    Parameters
    ----------
    path : str or Path
        Path to the FITS file.

    Returns
    -------
    fits.Header
        FITS header object.
    """
    with fits.open(path) as hdul:
        return hdul[0].header.copy()


def write_fits(
    path: str | Path,
    data: np.ndarray,
    header: fits.Header | None = None,
    overwrite: bool = False,
) -> None:
    """
    Write a FITS file with proper header.

    Parameters
    ----------
    path : str or Path
        Output path.
    data : np.ndarray
        Image data to write, (H, W) or (H, W, C).
    header : fits.Header, optional
        Header to include. A minimal header is created if not provided.
    overwrite : bool, default False
        Whether to overwrite existing file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if header is None:
        header = fits.Header()

    # FITS stores colour planes first
    if data.ndim == 3:
        data = np.moveaxis(data, -1, 0)

    hdu = fits.PrimaryHDU(data=data, header=header)
    hdu.writeto(path, overwrite=overwrite)
    logger.info("Wrote FITS: %s", path)
