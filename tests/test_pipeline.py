"""Tests for the pipeline orchestrator state machine."""

import numpy as np
import pytest

from histogram_equalizer.processing.histogram import HistogramStrategy
from histogram_equalizer.processing.pipeline import (
    PipelineConfig,
    PipelineOrchestrator,
    PipelineState,
)
from histogram_equalizer.processing.scan import ScanAlgorithm
from histogram_equalizer.utils.compute_queue import CPUCommandQueue
from histogram_equalizer.utils.errors import (
    DecodeError,
    DeviceCompileError,
    DeviceRuntimeError,
)


def make_orchestrator(queue, bins=8, histogram=HistogramStrategy.LOCAL,
                      scan=ScanAlgorithm.HILLIS_STEELE):
    return PipelineOrchestrator(queue, PipelineConfig(bins=bins, histogram=histogram, scan=scan))


class TrackingQueue(CPUCommandQueue):
    """CPU queue that remembers every buffer it created."""

    def __init__(self):
        self.created = []

    def create_buffer(self, name, count, dtype=np.uint32):
        buffer = super().create_buffer(name, count, dtype)
        self.created.append(buffer)
        return buffer


class TestHappyPath:
    """Tests for successful runs."""

    def test_four_level_image(self, cpu_queue, four_level_image):
        """The 2x2 example equalises to [64, 128, 191, 255]."""
        orchestrator = make_orchestrator(cpu_queue)
        result = orchestrator.run_image(four_level_image)

        assert orchestrator.state is PipelineState.DONE
        assert result.bins == 8
        assert result.histogram.tolist() == [1, 0, 1, 0, 0, 1, 0, 1]
        assert result.cumulative.tolist() == [1, 1, 2, 2, 2, 3, 3, 4]
        assert result.lut.tolist() == [64, 64, 128, 128, 128, 191, 191, 255]
        assert result.output.tolist() == [64, 128, 191, 255]
        assert result.image.tolist() == [[64, 128], [191, 255]]
        assert result.image.dtype == np.uint8

    @pytest.mark.parametrize("histogram", list(HistogramStrategy))
    @pytest.mark.parametrize("scan", [
        ScanAlgorithm.SEQUENTIAL, ScanAlgorithm.HILLIS_STEELE, ScanAlgorithm.TILED_HILLIS_STEELE,
    ])
    def test_inclusive_configurations_agree(self, cpu_queue, low_contrast_image, histogram, scan):
        """Every strategy / inclusive scan combination gives the same output."""
        reference = make_orchestrator(CPUCommandQueue(), 64).run(low_contrast_image)
        result = make_orchestrator(cpu_queue, 64, histogram, scan).run(low_contrast_image)
        assert np.array_equal(result.output, reference.output)
        assert result.inclusive

    def test_blelloch_keeps_exclusive_scan(self, cpu_queue, four_level_image):
        """Blelloch normalises its exclusive scan as is."""
        result = make_orchestrator(cpu_queue, scan=ScanAlgorithm.BLELLOCH).run_image(four_level_image)
        assert not result.inclusive
        assert result.cumulative.tolist() == [0, 1, 1, 2, 2, 2, 3, 3]
        assert result.lut.tolist() == [0, 64, 64, 128, 128, 128, 191, 191]
        assert result.output.tolist() == [0, 64, 128, 191]

    def test_contrast_is_stretched(self, cpu_queue, low_contrast_image):
        """A mid-tone image is spread towards the full range."""
        result = make_orchestrator(cpu_queue, 256).run_image(low_contrast_image)
        assert result.image.max() == 255
        assert int(result.image.max()) - int(result.image.min()) > 200

    def test_profile_covers_every_stage(self, cpu_queue, four_level_image):
        """The report holds the four stages, the transfers and the totals."""
        result = make_orchestrator(cpu_queue).run(four_level_image)
        profile = result.profile
        assert list(profile.stages) == [
            "histogram", "cumulative_histogram", "normalised_histogram", "back_projection",
        ]
        # 2 writes + 4 reads
        assert profile.transfers.submissions == 6
        assert profile.totals.total_ns >= 0

    def test_bin_request_is_coerced(self, cpu_queue, four_level_image):
        """Non-canonical and invalid bin requests are resolved, not rejected."""
        assert make_orchestrator(cpu_queue, bins=100).bins == 128
        assert make_orchestrator(cpu_queue, bins="lots").bins == 8

    def test_metadata(self, cpu_queue, four_level_image):
        result = make_orchestrator(cpu_queue, scan=ScanAlgorithm.SEQUENTIAL).run_image(four_level_image)
        assert result.metadata["scan"] == "simple"
        assert result.metadata["histogram"] == "local"
        assert result.metadata["backend"] == "cpu"
        assert result.metadata["colour"] is False


class TestInputs:
    """Tests for image shapes, bit depths and colour."""

    def test_empty_image(self, cpu_queue):
        """An empty image runs to DONE with an all-zero histogram and table."""
        orchestrator = make_orchestrator(cpu_queue)
        result = orchestrator.run_image(np.zeros((0, 0), dtype=np.uint8))
        assert orchestrator.state is PipelineState.DONE
        assert result.histogram.tolist() == [0] * 8
        assert result.lut.tolist() == [0] * 8
        assert result.output.size == 0

    def test_sixteen_bit_input(self, cpu_queue):
        """16-bit samples are divided by 257 before equalisation."""
        pixels = np.array([[0, 85 * 257], [170 * 257, 65535]], dtype=np.uint16)
        result = make_orchestrator(cpu_queue).run_image(pixels)
        assert result.output.tolist() == [64, 128, 191, 255]

    def test_colour_image(self, cpu_queue, sample_image_uint8):
        """Colour images are equalised on luma and come back as RGB."""
        result = make_orchestrator(cpu_queue, 256).run_image(sample_image_uint8)
        assert result.image.shape == sample_image_uint8.shape
        assert result.image.dtype == np.uint8
        assert result.metadata["colour"] is True
        assert int(result.histogram.sum()) == 100 * 100

    def test_single_channel_axis(self, cpu_queue, four_level_image):
        """H x W x 1 is treated as greyscale."""
        result = make_orchestrator(cpu_queue).run_image(four_level_image[:, :, np.newaxis])
        assert result.image.shape == (2, 2)

    def test_unsupported_channels(self, cpu_queue):
        with pytest.raises(ValueError):
            make_orchestrator(cpu_queue).run_image(np.zeros((2, 2, 2), dtype=np.uint8))

    def test_flat_buffer_must_be_uint8(self, cpu_queue):
        with pytest.raises(TypeError):
            make_orchestrator(cpu_queue).run(np.zeros(4, dtype=np.uint16))


class TestStateMachine:
    """Tests for transitions and failure handling."""

    def test_transitions_are_sequential(self, cpu_queue):
        """Skipping a state raises."""
        orchestrator = make_orchestrator(cpu_queue)
        with pytest.raises(RuntimeError):
            orchestrator._advance(PipelineState.HISTOGRAM_READY)
        assert orchestrator.state is PipelineState.IDLE

    def test_run_requires_reset(self, cpu_queue, four_level_image):
        """A finished orchestrator must be reset before the next run."""
        orchestrator = make_orchestrator(cpu_queue)
        orchestrator.run(four_level_image)
        with pytest.raises(RuntimeError):
            orchestrator.run(four_level_image)
        orchestrator.reset()
        assert orchestrator.state is PipelineState.IDLE
        assert orchestrator.run(four_level_image).output.tolist() == [64, 128, 191, 255]

    def test_compile_error(self, four_level_image):
        """A kernel that fails to build fails the run with its build log."""
        queue = TrackingQueue()
        orchestrator = make_orchestrator(queue)
        orchestrator.histogram_builder.kernel_name = "hist_missing"

        with pytest.raises(DeviceCompileError) as excinfo:
            orchestrator.run(four_level_image)

        assert "hist_missing" in excinfo.value.build_log
        assert orchestrator.state is PipelineState.FAILED
        assert orchestrator.result is None
        assert queue.created == []

    def test_runtime_error_releases_buffers(self, four_level_image, monkeypatch):
        """A failing stage leaves FAILED, publishes nothing and frees every buffer."""
        queue = TrackingQueue()
        orchestrator = make_orchestrator(queue)

        def broken_submit(*args, **kwargs):
            raise DeviceRuntimeError("Command submission failed",
                                     operation="enqueue scan_hs", code="out_of_resources")

        monkeypatch.setattr(orchestrator.scan_engine, "submit", broken_submit)

        with pytest.raises(DeviceRuntimeError):
            orchestrator.run(four_level_image)

        assert orchestrator.state is PipelineState.FAILED
        assert orchestrator.result is None
        assert isinstance(orchestrator.error, DeviceRuntimeError)
        assert queue.created
        assert all(buffer.released for buffer in queue.created)

    def test_failed_until_reset(self, four_level_image, monkeypatch):
        """After a failure no transition is possible until reset()."""
        orchestrator = make_orchestrator(CPUCommandQueue())
        orchestrator.histogram_builder.kernel_name = "hist_missing"
        with pytest.raises(DeviceCompileError):
            orchestrator.run(four_level_image)

        with pytest.raises(RuntimeError):
            orchestrator._advance(PipelineState.BUFFERS_ALLOCATED)

        orchestrator.reset()
        orchestrator.histogram_builder.kernel_name = "hist_atomic"
        assert orchestrator.run(four_level_image).output.tolist() == [64, 128, 191, 255]

    def test_decode_error(self, cpu_queue, tmp_path):
        """A missing file fails the run before any device work."""
        orchestrator = make_orchestrator(cpu_queue)
        with pytest.raises(DecodeError):
            orchestrator.run_file(str(tmp_path / "missing.pgm"))
        assert orchestrator.state is PipelineState.FAILED
        assert orchestrator.result is None
