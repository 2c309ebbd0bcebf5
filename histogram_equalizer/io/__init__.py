# IO package initialization
from .image_loader import (
    load_image,
    DecodedImage,
    SUPPORTED_EXTENSIONS,
)
from .image_saver import save_image

__all__ = [
    'load_image',
    'DecodedImage',
    'SUPPORTED_EXTENSIONS',
    'save_image',
]
