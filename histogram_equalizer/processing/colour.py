"""
Value-level colour and bit-depth transforms applied around the pipeline.

Colour images are equalised on their luma channel only. OpenCV's YCrCb
conversion keeps luma in channel 0, so chroma can be reattached untouched.
"""

import cv2
import numpy as np

from ..utils.logger import get_logger

logger = get_logger(__name__)

SIXTEEN_TO_EIGHT_BIT = 257


def to_8bit(samples: np.ndarray) -> np.ndarray:
    """
    Convert decoded samples to uint8.

    Buffers whose maximum exceeds 255 are treated as 16-bit and divided by
    257 (65535 -> 255); anything else is taken as already 8-bit.
    """
    samples = np.asarray(samples)
    if samples.dtype == np.uint8:
        return samples
    if samples.size and samples.max() > 255:
        logger.debug("Downconverting %s samples to 8 bits", samples.dtype)
        samples = samples // SIXTEEN_TO_EIGHT_BIT
    return np.clip(samples, 0, 255).astype(np.uint8)


def split_luma(rgb: np.ndarray):
    """Return (luma, ycrcb) for an RGB uint8 image."""
    if rgb.ndim != 3 or rgb.shape[2] != 3:
        raise ValueError(f"Expected an RGB image, got shape {rgb.shape}")
    ycrcb = cv2.cvtColor(rgb, cv2.COLOR_RGB2YCrCb)
    return ycrcb[:, :, 0].copy(), ycrcb


def merge_luma(ycrcb: np.ndarray, luma: np.ndarray) -> np.ndarray:
    """Put an equalised luma channel back and convert to RGB."""
    merged = ycrcb.copy()
    merged[:, :, 0] = luma.reshape(ycrcb.shape[:2])
    return cv2.cvtColor(merged, cv2.COLOR_YCrCb2RGB)
