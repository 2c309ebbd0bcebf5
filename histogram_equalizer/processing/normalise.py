"""Cumulative histogram -> output-intensity lookup table."""

from typing import List
import numpy as np

from ..utils.cpu_kernels import NDRange, register_kernel
from ..utils.gpu_resources import DeviceBuffer
from ..utils.profiling import ProfilingEvent
from .histogram import PARAM_MAX_INTENSITY, PARAM_SAMPLE_COUNT

MAX_INTENSITY = 255


def normalise_lut(cumulative: np.ndarray, total: int, max_intensity: int = MAX_INTENSITY) -> np.ndarray:
    """
    lut[i] = round(cumulative[i] * max_intensity / total), clamped.

    Halves round up. An empty image (total == 0) maps every bin to 0.
    """
    cumulative = np.asarray(cumulative, dtype=np.float64)
    if total <= 0:
        return np.zeros(cumulative.shape, dtype=np.uint32)
    scaled = np.floor(cumulative * max_intensity / total + 0.5)
    return np.clip(scaled, 0, max_intensity).astype(np.uint32)


@register_kernel("normalise")
def normalise(ndrange: NDRange, cumulative, lut, params):
    n = ndrange.global_size
    lut[:n] = normalise_lut(
        cumulative[:n], int(params[PARAM_SAMPLE_COUNT]), int(params[PARAM_MAX_INTENSITY])
    )


class Normalizer:
    kernel_name = "normalise"

    def submit(
        self,
        queue,
        program,
        cumulative: DeviceBuffer,
        lut: DeviceBuffer,
        params: DeviceBuffer,
        bins: int,
    ) -> List[ProfilingEvent]:
        kernel = program.kernel(self.kernel_name)
        return [queue.enqueue_kernel(kernel, [cumulative, lut, params], bins)]
