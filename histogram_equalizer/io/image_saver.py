# Export functionality using Pillow
import os
import numpy as np
from PIL import Image

from ..utils.errors import AppError, ErrorCategory
from ..utils.logger import get_logger

logger = get_logger(__name__)


def save_image(image, file_path, quality=95):
    """Saves an equalised image to the specified file path using Pillow.

    Args:
        image (numpy.ndarray): uint8 image, H x W (grey) or H x W x 3 (RGB).
        file_path (str): Destination path; the extension selects the format.
        quality (int): The quality setting for JPEG (1-100, higher is better).

    Raises:
        AppError: If the image is empty or cannot be written.
    """
    if image is None or image.size == 0:
        raise AppError("Cannot save an empty image.", category=ErrorCategory.FILE_IO)

    if image.dtype != np.uint8:
        logger.warning("Image data type is not uint8. Clipping and converting.")
        image = np.clip(image, 0, 255).astype(np.uint8)

    # Pillow infers "L" or "RGB" from the array shape
    if not (image.ndim == 2 or (image.ndim == 3 and image.shape[2] == 3)):
        raise AppError(
            f"Cannot save image with shape {image.shape}",
            category=ErrorCategory.FILE_IO,
        )

    directory = os.path.dirname(file_path)
    if directory and not os.path.isdir(directory):
        os.makedirs(directory, exist_ok=True)

    save_kwargs = {}
    ext = os.path.splitext(file_path)[1].lower()
    if ext in (".jpg", ".jpeg"):
        save_kwargs["quality"] = max(1, min(100, int(quality)))

    try:
        with Image.fromarray(np.ascontiguousarray(image)) as pil_image:
            pil_image.save(file_path, **save_kwargs)
    except (OSError, ValueError) as e:
        raise AppError(
            f"Failed to save image to '{file_path}': {e}",
            category=ErrorCategory.FILE_IO,
            original_error=e,
        ) from e

    logger.info("Saved equalised image to '%s'", file_path)
