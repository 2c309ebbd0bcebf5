"""Lookup table -> enhanced image, one work item per sample."""

from typing import List

from ..utils.cpu_kernels import NDRange, register_kernel
from ..utils.gpu_resources import DeviceBuffer
from ..utils.profiling import ProfilingEvent
from .histogram import PARAM_BINS, PARAM_SAMPLE_COUNT, bin_index


@register_kernel("back_project")
def back_project(ndrange: NDRange, image, output, lut, params):
    count = min(int(params[PARAM_SAMPLE_COUNT]), ndrange.global_size)
    bins = int(params[PARAM_BINS])
    output[:count] = lut[bin_index(image[:count], bins)]


class BackProjector:
    kernel_name = "back_project"

    def submit(
        self,
        queue,
        program,
        image: DeviceBuffer,
        output: DeviceBuffer,
        lut: DeviceBuffer,
        params: DeviceBuffer,
        sample_count: int,
    ) -> List[ProfilingEvent]:
        kernel = program.kernel(self.kernel_name)
        return [queue.enqueue_kernel(kernel, [image, output, lut, params], sample_count)]
