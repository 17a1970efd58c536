"""
Tests for FITS I/O.

Author: Olivier Vitrac, PhD, HDR
        Generative Simulation Initiative
        olivier.vitrac@gmail.com
"""

import numpy as np
import pytest
from astropy.io import fits

from stackreject.io import list_frames, read_fits, read_header, write_fits


class TestListFrames:
    """Tests for frame discovery."""

    def test_sorted_fits_only(self, tmp_path):
        """FITS files are listed in name order, other files ignored."""
        for name in ["b.fits", "a.fit", "c.fits", "notes.txt"]:
            (tmp_path / name).write_bytes(b"")

        frames = list_frames(tmp_path)

        assert [p.name for p in frames] == ["a.fit", "b.fits", "c.fits"]

    def test_not_a_directory_raises(self, tmp_path):
        """A missing folder should raise ValueError."""
        with pytest.raises(ValueError, match="Not a directory"):
            list_frames(tmp_path / "missing")


class TestReadWriteFits:
    """Tests for FITS reading and writing."""

    def test_mono(self, tmp_path):
        """A mono frame is written and read back as float32."""
        data = np.arange(12, dtype=np.float32).reshape(3, 4)
        path = tmp_path / "mono.fits"
        write_fits(path, data)

        loaded = read_fits(path)

        assert loaded.dtype == np.float32
        np.testing.assert_array_equal(loaded, data)

    def test_colour_axis(self, tmp_path):
        """Colour planes are stored first and read back last."""
        data = np.zeros((3, 4, 3), dtype=np.float32)
        data[:, :, 2] = 7.0
        path = tmp_path / "rgb.fits"
        write_fits(path, data)

        with fits.open(path) as hdul:
            assert hdul[0].data.shape == (3, 3, 4)
        loaded = read_fits(path)
        assert loaded.shape == (3, 4, 3)
        assert np.all(loaded[:, :, 2] == 7.0)

    def test_scaled_uint16(self, tmp_path):
        """BZERO scaling is applied when reading unsigned data."""
        path = tmp_path / "u16.fits"
        fits.PrimaryHDU(np.full((2, 2), 60000, dtype=np.uint16)).writeto(path)

        assert np.all(read_fits(path) == 60000.0)

    def test_header_kept(self, tmp_path):
        """Header cards are written and read back."""
        header = fits.Header()
        header["EXPTIME"] = 15.0
        path = tmp_path / "hdr.fits"
        write_fits(path, np.ones((2, 2), dtype=np.float32), header=header)

        assert read_header(path)["EXPTIME"] == 15.0

    def test_no_overwrite_by_default(self, tmp_path):
        """Existing files are protected unless overwrite is set."""
        path = tmp_path / "out.fits"
        write_fits(path, np.ones((2, 2), dtype=np.float32))
        with pytest.raises(OSError):
            write_fits(path, np.zeros((2, 2), dtype=np.float32))
        write_fits(path, np.zeros((2, 2), dtype=np.float32), overwrite=True)
        assert np.all(read_fits(path) == 0)

    def test_no_data_raises(self, tmp_path):
        """A header-only primary HDU is not an image."""
        path = tmp_path / "empty.fits"
        fits.PrimaryHDU().writeto(path)
        with pytest.raises(ValueError, match="No image data"):
            read_fits(path)
