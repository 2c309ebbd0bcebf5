"""
Prefix sums over the histogram - four interchangeable scan algorithms.

=====================  =========  ===========  ===========
Algorithm              Work       Span         Convention
=====================  =========  ===========  ===========
SequentialScan         O(n)       O(n)         inclusive
HillisSteeleScan       O(n lg n)  O(lg n)      inclusive
TiledHillisSteeleScan  O(n lg n)  O(lg n)      inclusive
BlellochScan           O(n)       O(lg n)      exclusive
=====================  =========  ===========  ===========

The tree-based scans assume a power-of-two element count, which every
canonical bin count satisfies.
"""

from enum import Enum
from typing import List
import numpy as np

from ..utils.cpu_kernels import NDRange, register_kernel
from ..utils.gpu_resources import DeviceBuffer, LocalMemory
from ..utils.profiling import ProfilingEvent


class ScanAlgorithm(Enum):
    SEQUENTIAL = "simple"
    HILLIS_STEELE = "hillis"
    TILED_HILLIS_STEELE = "local"
    BLELLOCH = "blelloch"


def _require_power_of_two(n: int) -> None:
    if n <= 0 or n & (n - 1):
        raise ValueError(f"scan length must be a power of two, got {n}")


def exclusive_to_inclusive(exclusive: np.ndarray, histogram: np.ndarray) -> np.ndarray:
    """Inclusive scan from an exclusive one: add each element back in."""
    return np.asarray(exclusive) + np.asarray(histogram)


def inclusive_to_exclusive(inclusive: np.ndarray) -> np.ndarray:
    """Exclusive scan from an inclusive one: shift right, zero in front."""
    inclusive = np.asarray(inclusive)
    out = np.zeros_like(inclusive)
    out[1:] = inclusive[:-1]
    return out


# ---------------------------------------------------------------------------
# Reference kernels (CPU backend)
# ---------------------------------------------------------------------------

@register_kernel("scan_simple")
def scan_simple(ndrange: NDRange, histogram, cumulative):
    # A single work item walks the whole array
    total = 0
    for i in range(cumulative.size):
        total += int(histogram[i])
        cumulative[i] = total


@register_kernel("scan_hs")
def scan_hs(ndrange: NDRange, histogram, cumulative, scratch):
    n = ndrange.global_size
    _require_power_of_two(n)
    cumulative[:n] = histogram[:n]
    stride = 1
    while stride < n:
        # Every item reads the previous step's snapshot, writes scratch,
        # and the barrier publishes scratch back
        scratch[:n] = cumulative[:n]
        scratch[stride:n] += cumulative[:n - stride]
        cumulative[:n] = scratch[:n]
        stride *= 2


@register_kernel("scan_local_hs")
def scan_local_hs(ndrange: NDRange, histogram, cumulative, local_a: LocalMemory, local_b: LocalMemory):
    _require_power_of_two(ndrange.group_size)
    for _, start, end in ndrange.groups():
        n = end - start
        if local_a.words() < n or local_b.words() < n:
            raise ValueError(f"local scan buffers hold fewer than {n} elements")
        a = np.array(histogram[start:end], dtype=cumulative.dtype)
        b = np.empty_like(a)
        stride = 1
        while stride < n:
            b[:] = a
            b[stride:] += a[:-stride]
            a, b = b, a
            stride *= 2
        cumulative[start:end] = a


@register_kernel("histo_copy")
def histo_copy(ndrange: NDRange, source, destination):
    n = ndrange.global_size
    destination[:n] = source[:n]


@register_kernel("scan_bl")
def scan_bl(ndrange: NDRange, data):
    n = ndrange.global_size
    _require_power_of_two(n)

    # Up-sweep: partial sums at the right child of every subtree
    stride = 1
    while stride < n:
        right = np.arange(2 * stride - 1, n, 2 * stride)
        data[right] += data[right - stride]
        stride *= 2

    data[n - 1] = 0

    # Down-sweep: push prefixes back towards the leaves
    stride = n // 2
    while stride > 0:
        right = np.arange(2 * stride - 1, n, 2 * stride)
        left = right - stride
        carried = data[left].copy()
        data[left] = data[right]
        data[right] += carried
        stride //= 2


# ---------------------------------------------------------------------------
# Host-side scan engines
# ---------------------------------------------------------------------------

class ScanEngine:
    """Submits the kernels that turn `histogram` into `cumulative`."""

    algorithm: ScanAlgorithm
    inclusive: bool = True
    kernel_names: List[str] = []

    def submit(
        self,
        queue,
        program,
        histogram: DeviceBuffer,
        cumulative: DeviceBuffer,
        scratch: DeviceBuffer,
        bins: int,
    ) -> List[ProfilingEvent]:
        raise NotImplementedError


class SequentialScan(ScanEngine):
    algorithm = ScanAlgorithm.SEQUENTIAL
    kernel_names = ["scan_simple"]

    def submit(self, queue, program, histogram, cumulative, scratch, bins):
        kernel = program.kernel("scan_simple")
        return [queue.enqueue_kernel(kernel, [histogram, cumulative], 1)]


class HillisSteeleScan(ScanEngine):
    algorithm = ScanAlgorithm.HILLIS_STEELE
    kernel_names = ["scan_hs"]

    def submit(self, queue, program, histogram, cumulative, scratch, bins):
        kernel = program.kernel("scan_hs")
        return [queue.enqueue_kernel(kernel, [histogram, cumulative, scratch], bins)]


class TiledHillisSteeleScan(ScanEngine):
    algorithm = ScanAlgorithm.TILED_HILLIS_STEELE
    kernel_names = ["scan_local_hs"]

    def submit(self, queue, program, histogram, cumulative, scratch, bins):
        kernel = program.kernel("scan_local_hs")
        tile_a = LocalMemory(bins * histogram.dtype.itemsize)
        tile_b = LocalMemory(bins * histogram.dtype.itemsize)
        return [queue.enqueue_kernel(
            kernel, [histogram, cumulative, tile_a, tile_b], bins, bins,
        )]


class BlellochScan(ScanEngine):
    algorithm = ScanAlgorithm.BLELLOCH
    inclusive = False
    kernel_names = ["histo_copy", "scan_bl"]

    def submit(self, queue, program, histogram, cumulative, scratch, bins):
        # Scan a copy so the raw histogram survives
        copy_event = queue.enqueue_kernel(
            program.kernel("histo_copy"), [histogram, cumulative], bins,
        )
        scan_event = queue.enqueue_kernel(program.kernel("scan_bl"), [cumulative], bins)
        return [copy_event, scan_event]


_ENGINES = {
    ScanAlgorithm.SEQUENTIAL: SequentialScan,
    ScanAlgorithm.HILLIS_STEELE: HillisSteeleScan,
    ScanAlgorithm.TILED_HILLIS_STEELE: TiledHillisSteeleScan,
    ScanAlgorithm.BLELLOCH: BlellochScan,
}


def get_scan_engine(algorithm: ScanAlgorithm) -> ScanEngine:
    return _ENGINES[algorithm]()
