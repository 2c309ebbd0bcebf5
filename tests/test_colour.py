"""Tests for bit-depth and colour transforms."""

import numpy as np
import pytest

from histogram_equalizer.processing.colour import merge_luma, split_luma, to_8bit


class TestTo8Bit:
    """Tests for to_8bit."""

    def test_uint8_passthrough(self):
        samples = np.array([0, 128, 255], dtype=np.uint8)
        assert to_8bit(samples) is samples

    def test_sixteen_bit_divided_by_257(self):
        samples = np.array([0, 257, 32896, 65535], dtype=np.uint16)
        assert to_8bit(samples).tolist() == [0, 1, 128, 255]

    def test_low_sixteen_bit_values_kept(self):
        """A 16-bit buffer whose maximum fits in 8 bits is only cast."""
        samples = np.array([0, 17, 255], dtype=np.uint16)
        result = to_8bit(samples)
        assert result.dtype == np.uint8
        assert result.tolist() == [0, 17, 255]

    def test_empty(self):
        assert to_8bit(np.zeros(0, dtype=np.uint16)).size == 0


class TestLuma:
    """Tests for split_luma / merge_luma."""

    def test_grey_pixels_have_equal_luma(self):
        """For R = G = B the luma is that value."""
        rgb = np.full((4, 4, 3), 90, dtype=np.uint8)
        luma, _ = split_luma(rgb)
        assert luma.shape == (4, 4)
        assert np.all(luma == 90)

    def test_round_trip(self, sample_image_uint8):
        """Merging the untouched luma back gives the original within rounding."""
        luma, ycrcb = split_luma(sample_image_uint8)
        restored = merge_luma(ycrcb, luma)
        diff = np.abs(restored.astype(np.int16) - sample_image_uint8.astype(np.int16))
        assert diff.max() <= 2

    def test_split_does_not_alias(self, sample_image_uint8):
        """The returned luma is a copy, not a view into the YCrCb image."""
        luma, ycrcb = split_luma(sample_image_uint8)
        luma[:] = 0
        assert ycrcb[:, :, 0].any()

    def test_split_rejects_grey(self):
        with pytest.raises(ValueError):
            split_luma(np.zeros((4, 4), dtype=np.uint8))
