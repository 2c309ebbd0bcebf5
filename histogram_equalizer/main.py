# Application entry point
"""
Command-line front end.

    python -m histogram_equalizer -f test.pgm --bins 64 --histogram local --scan blelloch

Any of --bins, --histogram and --scan that is left out is asked for on the
console. String choices are turned into enums here; the processing package
only ever sees validated values.
"""

import argparse
import sys

import numpy as np

from histogram_equalizer.config import settings
from .processing.bins import CANONICAL_BIN_COUNTS, parse_bin_request
from .processing.histogram import HistogramStrategy
from .processing.pipeline import PipelineConfig, PipelineOrchestrator
from .processing.scan import ScanAlgorithm
from .utils.errors import AppError, format_user_error
from .utils.gpu_device import ComputeDevice
from .utils.logger import get_logger, set_log_level
from .utils.profiling import ProfilingResolution, StageProfiler, get_full_profiling_info

logger = get_logger(__name__)

BIN_PROMPT = (
    "Please enter the number of bins you want, "
    f"{', '.join(str(b) for b in CANONICAL_BIN_COUNTS)}: "
    "Anything else will be the upper bound for the bin entered. "
    f"Values larger than {CANONICAL_BIN_COUNTS[-1]} will default to {CANONICAL_BIN_COUNTS[-1]}. "
    f"Any non number will default to an {CANONICAL_BIN_COUNTS[0]} binned output."
)
HISTOGRAM_PROMPT = (
    "What histogram would you like to use. Type 1 for a global histogram. "
    "Type anything else for the local histogram"
)
SCAN_PROMPT = (
    "Would you like blelloch or simple a local hillis steele or regular hillis: "
    "Type blelloch for blelloch, simple for simple or local for the local hillis. "
    "Any other answer will default to hillis steele"
)

_STAGE_TITLES = {
    "histogram": "Histogram",
    "cumulative_histogram": "Cumulative Histogram",
    "normalised_histogram": "Normalised Histogram",
    "back_projection": "Look Up Table",
}


def parse_histogram_choice(answer) -> HistogramStrategy:
    """'1' or 'global' selects the global-memory histogram, anything else the local one."""
    text = str(answer).strip().lower()
    if text in ("1", HistogramStrategy.GLOBAL.value):
        return HistogramStrategy.GLOBAL
    return HistogramStrategy.LOCAL


def parse_scan_choice(answer) -> ScanAlgorithm:
    """'blelloch', 'simple' and 'local' pick those scans; anything else is Hillis-Steele."""
    text = str(answer).strip().lower()
    for algorithm in ScanAlgorithm:
        if text == algorithm.value:
            return algorithm
    return ScanAlgorithm.HILLIS_STEELE


def build_parser() -> argparse.ArgumentParser:
    defaults = settings.PIPELINE_DEFAULTS
    parser = argparse.ArgumentParser(
        prog="histogram_equalizer",
        description="Histogram equalisation of an 8-bit greyscale or colour image on a compute device.",
    )
    parser.add_argument("-f", "--file", default=defaults["input_file"],
                        help="input image file (default: %(default)s)")
    parser.add_argument("-d", "--device", type=int, default=None,
                        help="index of the adapter to run on (see --list)")
    parser.add_argument("-l", "--list", action="store_true",
                        help="list all adapters and exit")
    parser.add_argument("-b", "--bins", default=None,
                        help="number of bins; snapped up to one of "
                             f"{', '.join(str(b) for b in CANONICAL_BIN_COUNTS)}")
    parser.add_argument("--histogram", choices=[s.value for s in HistogramStrategy], default=None,
                        help="global-memory or work-group-local histogram")
    parser.add_argument("--scan", choices=[a.value for a in ScanAlgorithm], default=None,
                        help="prefix-sum algorithm")
    parser.add_argument("--backend", choices=["auto", "wgpu", "cpu"],
                        default=settings.GPU_SETTINGS["backend"],
                        help="compute backend (default: %(default)s)")
    parser.add_argument("-o", "--output", default=None,
                        help="save the equalised image to this path")
    parser.add_argument("--no-display", action="store_true",
                        help="do not open the preview window")
    parser.add_argument("--resolution", choices=[r.unit for r in ProfilingResolution],
                        default=settings.PROFILING_DEFAULTS["detail_resolution"],
                        help="unit of the detailed profiling figures (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="debug logging")
    return parser


def resolve_choices(args, prompt=input):
    """Fills in bins / histogram / scan from the arguments, asking for missing ones."""
    bins_answer = args.bins if args.bins is not None else prompt(BIN_PROMPT + "\n")
    bins = parse_bin_request(bins_answer)

    if args.histogram is not None:
        histogram = HistogramStrategy(args.histogram)
    else:
        histogram = parse_histogram_choice(prompt(HISTOGRAM_PROMPT + "\n"))

    if args.scan is not None:
        scan = ScanAlgorithm(args.scan)
    else:
        scan = parse_scan_choice(prompt(SCAN_PROMPT + "\n"))
    return bins, histogram, scan


def format_report(result, resolution: ProfilingResolution) -> str:
    """Per-stage timings, buffer transfers and the run totals, as printed after a run."""
    profile = result.profile
    lines = []
    for name, timing in profile.stages.items():
        title = _STAGE_TITLES.get(name, name)
        lines.append(StageProfiler.execution_summary(timing))
        lines.append(f"Full {title.lower()} kernel information: "
                     f"{get_full_profiling_info(timing, resolution)}")
        lines.append("")
    if profile.transfers is not None:
        lines.append(f"Accumulated Buffer Read/Write Time in nanoseconds: {profile.transfers.execution_ns}")
        lines.append(f"Accumulated Buffer Read/Write information: "
                     f"{get_full_profiling_info(profile.transfers, resolution)}")
        lines.append("")
    totals = profile.totals
    lines.append(f"Full memory transfer in nanoseconds {totals.execution_ns}")
    lines.append(f"Full queue times for program in nanoseconds {totals.queueing_ns}")
    lines.append(f"Full submission times for program in nanoseconds {totals.submission_ns}")
    lines.append(f"Total program performance in nanoseconds {totals.total_ns}")
    return "\n".join(lines)


def format_arrays(result) -> str:
    cumulative_title = "Cumulative Histogram" if result.inclusive else "Cumulative Histogram (exclusive)"
    with np.printoptions(threshold=sys.maxsize, linewidth=120):
        return "\n".join([
            "Histogram",
            str(result.histogram),
            "",
            cumulative_title,
            str(result.cumulative),
            "",
            "Normalised Histogram",
            str(result.normalised_histogram),
        ])


def main(argv=None, prompt=input):
    """Runs one equalisation; returns the process exit status."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_log_level("DEBUG")

    if args.list:
        for line in ComputeDevice.list_adapters():
            print(line)
        return 0

    try:
        device = ComputeDevice.configure(args.backend, args.device)
        info = device.get_info()
        print(f"Running on {info['backend']}, {info['device_name']}")

        bins, histogram, scan = resolve_choices(args, prompt)
        resolution = ProfilingResolution.from_unit(args.resolution)
        config = PipelineConfig(bins=bins, histogram=histogram, scan=scan, resolution=resolution)
        orchestrator = PipelineOrchestrator(device.create_queue(), config)

        result = orchestrator.run_file(args.file)

        print(format_report(result, resolution))
        print()
        print(format_arrays(result))

        if args.output:
            from .io.image_saver import save_image
            save_image(result.image, args.output)
    except AppError as e:
        logger.error("Run aborted: %s", e)
        print(f"ERROR: {format_user_error(e)}", file=sys.stderr)
        return 1

    if not args.no_display:
        from .processing.colour import to_8bit
        from .ui.preview_window import show_preview
        show_preview(to_8bit(result.metadata["source"].pixels), result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
