"""
Pipeline orchestration - one histogram-equalisation run on a compute queue.

The orchestrator walks a strictly sequential state machine:

    IDLE -> BUFFERS_ALLOCATED -> HISTOGRAM_READY -> CUMULATIVE_READY
         -> NORMALIZED_READY -> BACK_PROJECTED -> DONE

Every transition follows a blocking read-back of the stage's output. Any
failure moves the run to FAILED, the device buffers are released and no
result is published.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import numpy as np

from histogram_equalizer.config import settings
from ..utils.errors import AppError
from ..utils.gpu_resources import DeviceBuffer
from ..utils.logger import get_logger
from ..utils.profiling import (
    ProfilingReport,
    ProfilingResolution,
    StageProfiler,
)
from .back_projection import BackProjector
from .bins import parse_bin_request
from .colour import merge_luma, split_luma, to_8bit
from .histogram import PARAM_COUNT, HistogramStrategy, get_histogram_builder
from .normalise import Normalizer
from .scan import ScanAlgorithm, get_scan_engine

logger = get_logger(__name__)


class PipelineState(Enum):
    IDLE = "idle"
    BUFFERS_ALLOCATED = "buffers_allocated"
    HISTOGRAM_READY = "histogram_ready"
    CUMULATIVE_READY = "cumulative_ready"
    NORMALIZED_READY = "normalized_ready"
    BACK_PROJECTED = "back_projected"
    DONE = "done"
    FAILED = "failed"


_SEQUENCE = [
    PipelineState.IDLE,
    PipelineState.BUFFERS_ALLOCATED,
    PipelineState.HISTOGRAM_READY,
    PipelineState.CUMULATIVE_READY,
    PipelineState.NORMALIZED_READY,
    PipelineState.BACK_PROJECTED,
    PipelineState.DONE,
]


@dataclass
class PipelineConfig:
    """Parameters of one run, as handed over by the CLI layer."""
    bins: int = settings.PIPELINE_DEFAULTS["bins"]
    histogram: HistogramStrategy = HistogramStrategy(settings.PIPELINE_DEFAULTS["histogram"])
    scan: ScanAlgorithm = ScanAlgorithm(settings.PIPELINE_DEFAULTS["scan"])
    max_intensity: int = settings.PIPELINE_DEFAULTS["max_intensity"]
    workgroup_size: int = settings.GPU_SETTINGS["workgroup_size"]
    resolution: ProfilingResolution = ProfilingResolution.from_unit(
        settings.PROFILING_DEFAULTS["detail_resolution"]
    )


@dataclass
class EqualizationResult:
    """Everything a finished run publishes."""
    bins: int
    histogram: np.ndarray
    cumulative: np.ndarray
    lut: np.ndarray
    output: np.ndarray
    inclusive: bool
    profile: ProfilingReport
    # Output reshaped to the input image (colour recombined), set by run_image
    image: Optional[np.ndarray] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    @property
    def normalised_histogram(self) -> np.ndarray:
        return self.lut


class PipelineOrchestrator:
    """
    Sequences the equalisation stages on one command queue.

    The orchestrator owns every device buffer and the profiling totals of a
    run. It is reusable: reset() returns a finished or failed orchestrator
    to IDLE.
    """

    def __init__(self, queue=None, config: Optional[PipelineConfig] = None) -> None:
        if queue is None:
            from ..utils.gpu_device import ComputeDevice
            queue = ComputeDevice.get().create_queue()
        self.queue = queue
        self.config = config or PipelineConfig()
        self.bins = parse_bin_request(self.config.bins)
        self.histogram_builder = get_histogram_builder(self.config.histogram)
        self.scan_engine = get_scan_engine(self.config.scan)
        self.normalizer = Normalizer()
        self.back_projector = BackProjector()

        self.state = PipelineState.IDLE
        self.result: Optional[EqualizationResult] = None
        self.error: Optional[Exception] = None
        self._buffers: Dict[str, DeviceBuffer] = {}

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _advance(self, target: PipelineState) -> None:
        if self.state is PipelineState.FAILED:
            raise RuntimeError("Pipeline has failed; call reset() before running again")
        current = _SEQUENCE.index(self.state)
        if _SEQUENCE.index(target) != current + 1:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {target.value}")
        logger.debug("Pipeline state: %s -> %s", self.state.value, target.value)
        self.state = target

    def _fail(self, error: Exception) -> None:
        logger.error("Pipeline failed in state '%s': %s", self.state.value, error)
        self.state = PipelineState.FAILED
        self.error = error
        self.result = None

    def reset(self) -> None:
        self._release_buffers()
        self.state = PipelineState.IDLE
        self.result = None
        self.error = None

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def kernel_names(self) -> List[str]:
        return [
            self.histogram_builder.kernel_name,
            *self.scan_engine.kernel_names,
            self.normalizer.kernel_name,
            self.back_projector.kernel_name,
        ]

    def run(self, samples: np.ndarray) -> EqualizationResult:
        """
        Equalise a flat buffer of 8-bit intensities.

        Raises:
            DeviceCompileError, DeviceRuntimeError: The run is aborted and
                the orchestrator is left in FAILED.
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"Pipeline is {self.state.value}; call reset() first")

        samples = np.asarray(samples)
        if samples.dtype != np.uint8:
            raise TypeError(f"Intensity buffer must be uint8, got {samples.dtype}")
        samples = samples.ravel()

        profiler = StageProfiler(resolution=self.config.resolution)
        try:
            program = self.queue.build_program(
                self.kernel_names(),
                {"BINS": self.bins, "WORKGROUP_SIZE": self.config.workgroup_size},
            )
            self._allocate(samples, profiler)
            histogram = self._histogram_stage(program, samples.size, profiler)
            cumulative = self._scan_stage(program, profiler)
            lut = self._normalise_stage(program, profiler)
            output = self._back_projection_stage(program, samples.size, profiler)
            self._advance(PipelineState.DONE)
        except Exception as e:
            self._fail(e)
            raise
        finally:
            self._release_buffers()

        self.result = EqualizationResult(
            bins=self.bins,
            histogram=histogram,
            cumulative=cumulative,
            lut=lut,
            output=output,
            inclusive=self.scan_engine.inclusive,
            profile=profiler.finish(),
            metadata={
                "histogram": self.config.histogram.value,
                "scan": self.config.scan.value,
                "backend": getattr(self.queue, "backend", ""),
            },
        )
        return self.result

    def run_image(self, pixels: np.ndarray) -> EqualizationResult:
        """
        Equalise a decoded image (H x W grey or H x W x 3 RGB).

        Samples above 8 bits are downconverted first; colour images are
        equalised on luma and recombined with their chroma.
        """
        pixels = to_8bit(pixels)
        if pixels.ndim == 3 and pixels.shape[2] == 1:
            pixels = pixels[:, :, 0]

        if pixels.ndim == 3 and pixels.shape[2] != 3:
            raise ValueError(f"Unsupported channel count: {pixels.shape[2]}")

        colour = pixels.ndim == 3
        ycrcb = None
        if colour and pixels.size:
            luma, ycrcb = split_luma(pixels)
        elif colour:
            luma = pixels[:, :, 0]
        else:
            luma = pixels

        result = self.run(luma)
        enhanced = result.output.reshape(luma.shape)
        if ycrcb is not None:
            enhanced = merge_luma(ycrcb, enhanced)
        elif colour:
            enhanced = pixels.copy()
        result.image = enhanced
        result.metadata["colour"] = colour
        return result

    def run_file(self, path: str) -> EqualizationResult:
        """Decode an image file and equalise it. Decode errors fail the run before device work."""
        from ..io.image_loader import load_image

        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"Pipeline is {self.state.value}; call reset() first")
        try:
            decoded = load_image(path)
        except AppError as e:
            self._fail(e)
            raise
        result = self.run_image(decoded.pixels)
        result.metadata["source"] = decoded
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _allocate(self, samples: np.ndarray, profiler: StageProfiler) -> None:
        queue = self.queue
        n, bins = samples.size, self.bins
        for name, count in (
            ("image", n),
            ("output", n),
            ("histogram", bins),
            ("cumulative", bins),
            ("scratch", bins),
            ("lut", bins),
            ("params", PARAM_COUNT),
        ):
            self._buffers[name] = queue.create_buffer(name, count)

        params = np.array([n, bins, self.config.max_intensity], dtype=np.uint32)
        profiler.record_transfer(queue.enqueue_write(self._buffers["image"], samples))
        profiler.record_transfer(queue.enqueue_write(self._buffers["params"], params))
        self._advance(PipelineState.BUFFERS_ALLOCATED)

    def _read(self, name: str, profiler: StageProfiler) -> np.ndarray:
        data, event = self.queue.enqueue_read(self._buffers[name])
        profiler.record_transfer(event)
        return data

    def _histogram_stage(self, program, sample_count: int, profiler: StageProfiler) -> np.ndarray:
        b = self._buffers
        events = self.histogram_builder.submit(
            self.queue, program, b["image"], b["histogram"], b["params"],
            sample_count, self.bins, self.config.workgroup_size,
        )
        histogram = self._read("histogram", profiler)
        profiler.record("histogram", events)
        self._advance(PipelineState.HISTOGRAM_READY)
        return histogram

    def _scan_stage(self, program, profiler: StageProfiler) -> np.ndarray:
        b = self._buffers
        events = self.scan_engine.submit(
            self.queue, program, b["histogram"], b["cumulative"], b["scratch"], self.bins,
        )
        cumulative = self._read("cumulative", profiler)
        profiler.record("cumulative_histogram", events)
        self._advance(PipelineState.CUMULATIVE_READY)
        return cumulative

    def _normalise_stage(self, program, profiler: StageProfiler) -> np.ndarray:
        b = self._buffers
        events = self.normalizer.submit(
            self.queue, program, b["cumulative"], b["lut"], b["params"], self.bins,
        )
        lut = self._read("lut", profiler)
        profiler.record("normalised_histogram", events)
        self._advance(PipelineState.NORMALIZED_READY)
        return lut

    def _back_projection_stage(self, program, sample_count: int, profiler: StageProfiler) -> np.ndarray:
        b = self._buffers
        events = self.back_projector.submit(
            self.queue, program, b["image"], b["output"], b["lut"], b["params"], sample_count,
        )
        output = self._read("output", profiler).astype(np.uint8)
        profiler.record("back_projection", events)
        self._advance(PipelineState.BACK_PROJECTED)
        return output

    def _release_buffers(self) -> None:
        for buffer in self._buffers.values():
            buffer.release()
        self._buffers = {}
