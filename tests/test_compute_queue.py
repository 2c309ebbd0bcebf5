"""Tests for the device singleton, the NumPy command queue and the wgpu queue's host logic."""

from unittest.mock import MagicMock

import numpy as np
import pytest

from histogram_equalizer.utils.compute_queue import CPUCommandQueue, Kernel, Program, WgpuCommandQueue
from histogram_equalizer.utils.cpu_kernels import KernelRegistry, NDRange
from histogram_equalizer.utils.errors import DeviceCompileError, DeviceRuntimeError
from histogram_equalizer.utils.gpu_device import ComputeDevice
from histogram_equalizer.utils.gpu_resources import DeviceBuffer, LocalMemory


class TestComputeDevice:
    """Tests for the ComputeDevice singleton."""

    def test_singleton_pattern(self):
        """ComputeDevice.get() always returns the same instance."""
        assert ComputeDevice.get() is ComputeDevice.get()

    def test_direct_construction_rejected(self):
        ComputeDevice.get()
        with pytest.raises(RuntimeError):
            ComputeDevice()

    def test_cpu_backend(self):
        device = ComputeDevice.configure("cpu")
        info = device.get_info()
        assert info["backend"] == "cpu"
        assert info["enabled"] is True
        assert device.is_cpu and not device.is_wgpu
        assert isinstance(device.create_queue(), CPUCommandQueue)

    def test_unknown_backend(self):
        with pytest.raises(DeviceRuntimeError):
            ComputeDevice.configure("opencl")

    def test_backend_detection(self):
        """auto picks one of the two real backends."""
        assert ComputeDevice.configure("auto").backend in ("wgpu", "cpu")

    def test_list_adapters(self):
        lines = ComputeDevice.list_adapters()
        assert lines
        assert all(isinstance(line, str) for line in lines)

    def test_configure_clears_compiled_shaders(self):
        """Modules compiled for a discarded device are not handed to the next one."""
        from histogram_equalizer.utils.gpu_shaders import ShaderLoader

        ShaderLoader._cache[("hist_simple", (("BINS", 8),))] = object()
        ComputeDevice.configure("cpu")
        assert ShaderLoader._cache == {}


class TestNDRange:
    """Tests for work-item ranges."""

    def test_groups(self):
        ndrange = NDRange(10, 4)
        assert ndrange.num_groups == 3
        assert list(ndrange.groups()) == [(0, 0, 4), (1, 4, 8), (2, 8, 10)]

    def test_single_group_without_local_size(self):
        ndrange = NDRange(8)
        assert ndrange.group_size == 8
        assert ndrange.num_groups == 1

    def test_empty_range(self):
        assert NDRange(0, 256).num_groups == 0


class TestCPUCommandQueue:
    """Tests for buffer, kernel and program handling on the CPU queue."""

    def test_every_pipeline_kernel_is_registered(self, cpu_queue):
        names = ["hist_simple", "hist_atomic", "scan_simple", "scan_hs", "scan_local_hs",
                 "histo_copy", "scan_bl", "normalise", "back_project"]
        program = cpu_queue.build_program(names, {})
        assert isinstance(program, Program)
        assert program.kernel_names == sorted(names)
        assert set(names) <= set(KernelRegistry.names())

    def test_missing_kernel_fails_build(self, cpu_queue):
        with pytest.raises(DeviceCompileError) as excinfo:
            cpu_queue.build_program(["normalise", "nope"], {})
        assert excinfo.value.kernel_name == "nope"
        assert "nope" in excinfo.value.build_log

    def test_unknown_kernel_in_program(self, cpu_queue):
        program = cpu_queue.build_program(["normalise"], {})
        with pytest.raises(DeviceRuntimeError) as excinfo:
            program.kernel("scan_bl")
        assert excinfo.value.code == "invalid_kernel_name"

    def test_write_read_round_trip(self, cpu_queue):
        buffer = cpu_queue.create_buffer("data", 4)
        write_event = cpu_queue.enqueue_write(buffer, np.array([1, 2, 3, 4]))
        data, read_event = cpu_queue.enqueue_read(buffer)
        assert data.tolist() == [1, 2, 3, 4]
        assert data.dtype == np.uint32
        assert write_event.queued <= write_event.submitted <= write_event.started <= write_event.ended
        assert read_event.label == "read data"

    def test_read_returns_a_copy(self, cpu_queue):
        buffer = cpu_queue.create_buffer("data", 2)
        data, _ = cpu_queue.enqueue_read(buffer)
        data[:] = 9
        again, _ = cpu_queue.enqueue_read(buffer)
        assert again.tolist() == [0, 0]

    def test_oversized_write(self, cpu_queue):
        buffer = cpu_queue.create_buffer("data", 2)
        with pytest.raises(DeviceRuntimeError) as excinfo:
            cpu_queue.enqueue_write(buffer, np.arange(3))
        assert excinfo.value.operation == "write buffer"

    def test_negative_buffer_size(self, cpu_queue):
        with pytest.raises(DeviceRuntimeError):
            cpu_queue.create_buffer("data", -1)

    def test_use_after_release(self, cpu_queue):
        buffer = cpu_queue.create_buffer("data", 2)
        buffer.release()
        buffer.release()
        assert buffer.released
        with pytest.raises(DeviceRuntimeError) as excinfo:
            cpu_queue.enqueue_read(buffer)
        assert excinfo.value.code == "invalid_mem_object"

    def test_work_group_must_divide_range(self, cpu_queue):
        program = cpu_queue.build_program(["histo_copy"], {})
        a = cpu_queue.create_buffer("a", 10)
        b = cpu_queue.create_buffer("b", 10)
        with pytest.raises(DeviceRuntimeError) as excinfo:
            cpu_queue.enqueue_kernel(program.kernel("histo_copy"), [a, b], 10, 4)
        assert excinfo.value.code == "invalid_work_group_size"

    def test_kernel_event(self, cpu_queue):
        program = cpu_queue.build_program(["histo_copy"], {})
        a = cpu_queue.create_buffer("a", 4)
        b = cpu_queue.create_buffer("b", 4)
        cpu_queue.enqueue_write(a, np.array([5, 6, 7, 8]))
        event = cpu_queue.enqueue_kernel(program.kernel("histo_copy"), [a, b], 4)
        assert event.label == "histo_copy"
        assert event.ended >= event.started
        assert cpu_queue.enqueue_read(b)[0].tolist() == [5, 6, 7, 8]


class TestDeviceResources:
    """Tests for DeviceBuffer and LocalMemory."""

    def test_buffer_size(self):
        buffer = DeviceBuffer("lut", 256)
        assert buffer.nbytes == 1024
        assert "lut" in repr(buffer)

    def test_local_memory_words(self):
        assert LocalMemory(64).words() == 16


@pytest.fixture
def stub_wgpu_device():
    """Returns a ComputeDevice stand-in whose wgpu device records every call."""
    device = MagicMock()
    device.supports_timestamps = False
    device.max_workgroups_per_dim = 65535
    device.wgpu_device.create_buffer.return_value.read_mapped.return_value = bytes(16)
    return device


class TestWgpuCommandQueue:
    """Host-side submission logic of the wgpu queue, on a recording device."""

    def test_write_waits_by_polling(self, stub_wgpu_device):
        """Writes wait on the device poll, never on the queue work-done callback."""
        queue = WgpuCommandQueue(stub_wgpu_device)
        buffer = DeviceBuffer("image", 4, handle=MagicMock())

        queue.enqueue_write(buffer, np.array([0, 85, 170, 255]))

        gpu_queue = stub_wgpu_device.wgpu_device.queue
        gpu_queue.write_buffer.assert_called_once()
        stub_wgpu_device.poll.assert_called_once_with()
        gpu_queue.on_submitted_work_done_sync.assert_not_called()

    def test_untimed_kernel_waits_by_polling(self, stub_wgpu_device):
        pytest.importorskip("wgpu")
        queue = WgpuCommandQueue(stub_wgpu_device)
        buffer = DeviceBuffer("histogram", 8, handle=MagicMock())

        event = queue.enqueue_kernel(Kernel("hist_simple", MagicMock()), [buffer], 8)

        stub_wgpu_device.poll.assert_called_once_with()
        stub_wgpu_device.wgpu_device.queue.on_submitted_work_done_sync.assert_not_called()
        stub_wgpu_device.wgpu_device.create_query_set.assert_not_called()
        assert event.label == "hist_simple"

    def test_timed_kernels_destroy_their_query_sets(self, stub_wgpu_device):
        """Each timed kernel frees the query set and resolve buffer it created."""
        pytest.importorskip("wgpu")
        stub_wgpu_device.supports_timestamps = True
        gpu = stub_wgpu_device.wgpu_device
        query_sets = [MagicMock(name="query_set_a"), MagicMock(name="query_set_b")]
        gpu.create_query_set.side_effect = query_sets
        queue = WgpuCommandQueue(stub_wgpu_device)
        buffer = DeviceBuffer("histogram", 8, handle=MagicMock())

        for _ in query_sets:
            queue.enqueue_kernel(Kernel("hist_simple", MagicMock()), [buffer], 8)

        for query_set in query_sets:
            query_set.destroy.assert_called_once_with()
        gpu.queue.on_submitted_work_done_sync.assert_not_called()
