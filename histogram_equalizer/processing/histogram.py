"""
Histogram construction - two strategies with identical results.

NaiveGlobalCount runs one work item per sample and increments the global
histogram atomically. GroupedAtomicCount first accumulates a private
histogram per work group in local memory and merges each partial histogram
into the global one, trading a barrier for far less contention.
"""

from enum import Enum
from typing import List
import numpy as np

from ..utils.cpu_kernels import NDRange, register_kernel
from ..utils.gpu_resources import DeviceBuffer, LocalMemory
from ..utils.profiling import ProfilingEvent

MAX_SAMPLE_VALUE = 255

# Layout of the small parameter buffer shared by the kernels
PARAM_SAMPLE_COUNT = 0
PARAM_BINS = 1
PARAM_MAX_INTENSITY = 2
PARAM_COUNT = 3


class HistogramStrategy(Enum):
    GLOBAL = "global"
    LOCAL = "local"


def bin_index(samples: np.ndarray, bins: int) -> np.ndarray:
    """Bin of every sample: floor(sample * bins / 256), clamped to the last bin."""
    scaled = samples.astype(np.uint32) * np.uint32(bins) // np.uint32(MAX_SAMPLE_VALUE + 1)
    return np.minimum(scaled, bins - 1)


# ---------------------------------------------------------------------------
# Reference kernels (CPU backend)
# ---------------------------------------------------------------------------

@register_kernel("hist_simple")
def hist_simple(ndrange: NDRange, image, histogram, params):
    count = min(int(params[PARAM_SAMPLE_COUNT]), ndrange.global_size)
    bins = int(params[PARAM_BINS])
    # np.add.at applies repeated indices one by one, like atomic increments
    np.add.at(histogram, bin_index(image[:count], bins), 1)


@register_kernel("hist_atomic")
def hist_atomic(ndrange: NDRange, image, histogram, local_hist: LocalMemory, params):
    count = min(int(params[PARAM_SAMPLE_COUNT]), ndrange.global_size)
    bins = int(params[PARAM_BINS])
    if local_hist.words() < bins:
        raise ValueError(
            f"local histogram holds {local_hist.words()} bins, {bins} required"
        )
    if count == 0:
        return

    group_size = ndrange.group_size
    groups = ndrange.num_groups
    group_of = np.arange(count, dtype=np.int64) // group_size
    # One private histogram per work group ...
    partial = np.bincount(
        group_of * bins + bin_index(image[:count], bins),
        minlength=groups * bins,
    ).reshape(groups, bins)
    # ... merged into the global histogram
    for group_hist in partial:
        histogram[:bins] += group_hist.astype(histogram.dtype)


# ---------------------------------------------------------------------------
# Host-side builders
# ---------------------------------------------------------------------------

class HistogramBuilder:
    """Submits the kernel that fills `histogram` from `image`."""

    strategy: HistogramStrategy
    kernel_name: str = ""

    def submit(
        self,
        queue,
        program,
        image: DeviceBuffer,
        histogram: DeviceBuffer,
        params: DeviceBuffer,
        sample_count: int,
        bins: int,
        workgroup_size: int,
    ) -> List[ProfilingEvent]:
        raise NotImplementedError


class NaiveGlobalCount(HistogramBuilder):
    strategy = HistogramStrategy.GLOBAL
    kernel_name = "hist_simple"

    def submit(self, queue, program, image, histogram, params, sample_count, bins, workgroup_size):
        kernel = program.kernel(self.kernel_name)
        return [queue.enqueue_kernel(kernel, [image, histogram, params], sample_count)]


class GroupedAtomicCount(HistogramBuilder):
    strategy = HistogramStrategy.LOCAL
    kernel_name = "hist_atomic"

    def submit(self, queue, program, image, histogram, params, sample_count, bins, workgroup_size):
        kernel = program.kernel(self.kernel_name)
        # Pad the range to whole work groups; extra items are masked in the kernel
        padded = -(-sample_count // workgroup_size) * workgroup_size
        local = LocalMemory(bins * histogram.dtype.itemsize)
        return [queue.enqueue_kernel(
            kernel, [image, histogram, local, params], padded, workgroup_size,
        )]


_BUILDERS = {
    HistogramStrategy.GLOBAL: NaiveGlobalCount,
    HistogramStrategy.LOCAL: GroupedAtomicCount,
}


def get_histogram_builder(strategy: HistogramStrategy) -> HistogramBuilder:
    return _BUILDERS[strategy]()
