import pytest
import numpy as np

from histogram_equalizer.utils.compute_queue import CPUCommandQueue
from histogram_equalizer.utils.gpu_device import ComputeDevice


@pytest.fixture
def cpu_queue():
    """Returns an in-order queue on the NumPy reference executor."""
    return CPUCommandQueue()


@pytest.fixture
def four_level_image():
    """Returns the 2x2 image [0, 85, 170, 255]."""
    return np.array([[0, 85], [170, 255]], dtype=np.uint8)


@pytest.fixture
def low_contrast_image():
    """Returns a 64x80 uint8 image squeezed into the 100..139 range."""
    rng = np.random.default_rng(7)
    return rng.integers(100, 140, size=(64, 80), dtype=np.uint8)


@pytest.fixture
def sample_image_uint8():
    """Returns a simple 100x100 uint8 RGB image."""
    img = np.zeros((100, 100, 3), dtype=np.uint8)
    img[:50, :50] = [255, 0, 0]    # Red quadrant
    img[:50, 50:] = [0, 255, 0]    # Green quadrant
    img[50:, :50] = [0, 0, 255]    # Blue quadrant
    img[50:, 50:] = [255, 255, 0]  # Yellow quadrant
    return img


@pytest.fixture(autouse=True)
def reset_compute_device():
    """Tests that configure the device singleton must not leak it."""
    yield
    ComputeDevice.reset()
