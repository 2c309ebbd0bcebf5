"""
Benchmark Script - Compare histogram strategies and scan algorithms.

Runs every histogram strategy against every scan algorithm on synthetic
images and reports the per-stage device execution time and the run totals.

Usage:
    python -m histogram_equalizer.benchmark [--backend cpu] [--bins 256]
"""

import argparse
import itertools
from typing import Dict, List

import numpy as np

from .processing.histogram import HistogramStrategy
from .processing.pipeline import PipelineConfig, PipelineOrchestrator
from .processing.scan import ScanAlgorithm
from .utils.errors import AppError, format_user_error
from .utils.gpu_device import ComputeDevice
from .utils.logger import get_logger

logger = get_logger(__name__)

STAGES = ("histogram", "cumulative_histogram", "normalised_histogram", "back_projection")


def create_test_image(width: int = 2000, height: int = 1500) -> np.ndarray:
    """Create a low-contrast greyscale test image."""
    rng = np.random.default_rng(42)

    # Gradient squeezed into the mid-tones, plus noise
    x = np.linspace(80, 160, width)
    y = np.linspace(0, 20, height)
    xx, yy = np.meshgrid(x, y)
    image = xx + yy + rng.normal(0, 6, size=(height, width))
    return np.clip(image, 0, 255).astype(np.uint8)


def benchmark_configuration(
    queue,
    image: np.ndarray,
    config: PipelineConfig,
    iterations: int = 3,
) -> Dict[str, float]:
    """
    Run one configuration repeatedly.

    Returns the mean execution time per stage and of the whole run, in
    microseconds, taken from the device's profiling events.
    """
    orchestrator = PipelineOrchestrator(queue, config)
    samples: Dict[str, List[int]] = {name: [] for name in STAGES + ("total",)}
    for _ in range(iterations):
        orchestrator.reset()
        result = orchestrator.run(image)
        for name in STAGES:
            samples[name].append(result.profile.stages[name].execution_ns)
        samples["total"].append(result.profile.totals.total_ns)
    return {name: float(np.mean(values)) / 1000.0 for name, values in samples.items()}


def run_benchmark(backend: str = "auto", bins: int = 256, iterations: int = 3) -> int:
    """Run the full benchmark suite."""
    print("=" * 70)
    print("Histogram Equalisation Benchmark")
    print("=" * 70)

    try:
        device = ComputeDevice.configure(backend)
    except AppError as e:
        print(f"Device error: {format_user_error(e)}")
        return 1

    info = device.get_info()
    print(f"\nBackend: {info['backend']}")
    print(f"Device: {info['device_name'] or 'N/A'}")
    print(f"Bins: {bins}")

    sizes = [
        (1000, 750, "1000x750 (0.75 MP)"),
        (2000, 1500, "2000x1500 (3 MP)"),
    ]

    queue = device.create_queue()
    header = f"  {'histogram':<9} {'scan':<9}" + "".join(f"{name[:12]:>14}" for name in STAGES) + f"{'total':>12}"

    for width, height, label in sizes:
        print("\n" + "-" * 70)
        print(f"Image size: {label}  (times in us)")
        print("-" * 70)
        print(header)

        image = create_test_image(width, height)
        for strategy, algorithm in itertools.product(HistogramStrategy, ScanAlgorithm):
            config = PipelineConfig(bins=bins, histogram=strategy, scan=algorithm)
            try:
                means = benchmark_configuration(queue, image, config, iterations)
            except AppError as e:
                print(f"  {strategy.value:<9} {algorithm.value:<9} Error - {format_user_error(e)}")
                continue
            row = "".join(f"{means[name]:14.1f}" for name in STAGES)
            print(f"  {strategy.value:<9} {algorithm.value:<9}{row}{means['total']:12.1f}")

    print()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Benchmark histogram and scan kernels.")
    parser.add_argument("--backend", choices=["auto", "wgpu", "cpu"], default="auto")
    parser.add_argument("--bins", type=int, default=256)
    parser.add_argument("--iterations", type=int, default=3)
    args = parser.parse_args(argv)
    return run_benchmark(args.backend, args.bins, args.iterations)


if __name__ == "__main__":
    raise SystemExit(main())
