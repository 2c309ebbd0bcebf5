# Image import functionality using OpenCV
import os
from dataclasses import dataclass

import cv2
import numpy as np

from ..utils.errors import DecodeError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Extensions OpenCV decodes out of the box, including the PGM/PPM test images
SUPPORTED_EXTENSIONS = (
    ".pgm", ".ppm", ".pbm", ".pnm", ".png", ".jpg", ".jpeg",
    ".tif", ".tiff", ".bmp", ".webp",
)


@dataclass
class DecodedImage:
    """Pixels as decoded, before any bit-depth or colour conversion."""
    pixels: np.ndarray
    width: int
    height: int
    channels: int
    bit_depth: int
    file_path: str = ""


def load_image(file_path):
    """Loads an image from the specified file path using OpenCV.

    16-bit files keep their full range here; downconversion to 8 bits is
    done by the pipeline. Colour images are returned in RGB order and any
    alpha channel is dropped.

    Args:
        file_path (str): The path to the image file.

    Returns:
        DecodedImage: The decoded pixels (H x W or H x W x 3) with their dimensions.

    Raises:
        DecodeError: If the path is invalid, missing or cannot be decoded.
    """
    if not isinstance(file_path, str) or not file_path:
        raise DecodeError("Invalid file path provided.", file_path=str(file_path))

    if not os.path.isfile(file_path):
        raise DecodeError(f"File not found at '{file_path}'", file_path=file_path)

    if os.path.splitext(file_path)[1].lower() not in SUPPORTED_EXTENSIONS:
        logger.warning("Unrecognised extension for '%s', trying to decode anyway", file_path)

    pixels = cv2.imread(file_path, cv2.IMREAD_UNCHANGED)
    if pixels is None or pixels.size == 0:
        raise DecodeError(
            f"Could not decode image file (unsupported format or corrupted): '{file_path}'",
            file_path=file_path,
        )

    if pixels.dtype not in (np.uint8, np.uint16):
        raise DecodeError(
            f"Unsupported sample type {pixels.dtype} in '{file_path}'",
            file_path=file_path,
        )

    if pixels.ndim == 3:
        channels = pixels.shape[2]
        if channels == 4:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_BGRA2RGB)
        elif channels == 3:
            pixels = cv2.cvtColor(pixels, cv2.COLOR_BGR2RGB)
        elif channels == 1:
            pixels = pixels[:, :, 0]
        else:
            raise DecodeError(
                f"Unsupported channel count {channels} in '{file_path}'",
                file_path=file_path,
            )

    height, width = pixels.shape[:2]
    channels = 1 if pixels.ndim == 2 else pixels.shape[2]
    bit_depth = pixels.dtype.itemsize * 8

    logger.info("Loaded '%s' (%dx%d, %d channel(s), %d-bit)",
                file_path, width, height, channels, bit_depth)
    return DecodedImage(pixels, width, height, channels, bit_depth, file_path)
