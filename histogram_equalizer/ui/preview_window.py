"""
Before/after preview of an equalisation run.

Shows the input and the enhanced image side by side above a histogram plot.
ESC or closing the window ends the preview.
"""

import sys
import numpy as np
from PyQt6.QtCore import Qt
from PyQt6.QtGui import QImage, QPixmap
from PyQt6.QtWidgets import QApplication, QHBoxLayout, QLabel, QVBoxLayout, QWidget

from histogram_equalizer.config import settings
from ..utils.logger import get_logger
from .histogram_widget import HistogramWidget

logger = get_logger(__name__)


def numpy_to_pixmap(image_np, max_size=None):
    """Converts a uint8 grey or RGB array to a QPixmap, optionally scaled down."""
    if not isinstance(image_np, np.ndarray) or image_np.dtype != np.uint8:
        raise ValueError("Image must be a NumPy array of type uint8.")
    if image_np.size == 0:
        return QPixmap()

    image_np = np.ascontiguousarray(image_np)
    if image_np.ndim == 2:
        height, width = image_np.shape
        q_image = QImage(image_np.data, width, height, width, QImage.Format.Format_Grayscale8)
    else:
        height, width, _ = image_np.shape
        q_image = QImage(image_np.data, width, height, 3 * width, QImage.Format.Format_RGB888)

    # QImage borrows the numpy buffer; copy before the array can go away
    pixmap = QPixmap.fromImage(q_image.copy())
    if max_size and (width > max_size or height > max_size):
        pixmap = pixmap.scaled(
            max_size, max_size,
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation,
        )
    return pixmap


class PreviewWindow(QWidget):
    """Input | output images over the run's histogram."""

    def __init__(self, original, result, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Histogram Equalisation")
        max_size = settings.UI_DEFAULTS["preview_max_size"]

        self.input_label = QLabel()
        self.input_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.input_label.setPixmap(numpy_to_pixmap(original, max_size))
        self.input_label.setToolTip("Input")

        self.output_label = QLabel()
        self.output_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        enhanced = result.image if result.image is not None else result.output
        self.output_label.setPixmap(numpy_to_pixmap(enhanced, max_size))
        self.output_label.setToolTip("Output")

        images = QHBoxLayout()
        images.addWidget(self.input_label)
        images.addWidget(self.output_label)

        self.histogram_widget = HistogramWidget(self)
        self.histogram_widget.update_from_result(result)

        layout = QVBoxLayout(self)
        layout.addLayout(images)
        layout.addWidget(self.histogram_widget)
        self.setLayout(layout)

    def keyPressEvent(self, event):
        if event.key() == Qt.Key.Key_Escape:
            self.close()
            return
        super().keyPressEvent(event)


def show_preview(original, result):
    """Blocks until the preview window is closed."""
    app = QApplication.instance() or QApplication(sys.argv)
    window = PreviewWindow(original, result)
    window.show()
    logger.info("Preview open; press ESC to close")
    return app.exec()
