"""
Command queues - ordered, profiled submission of writes, kernels and reads.

Both queues are in-order: a read observes every write and kernel submitted
before it. Writes and kernels are asynchronous on wgpu; enqueue_read blocks
until the data is on the host, which is the pipeline's only barrier.

Every enqueue call returns a ProfilingEvent with host-clock nanosecond
timestamps for queued and submitted. Started/ended come from GPU timestamp
queries when the adapter supports them and from the host clock otherwise.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import numpy as np

from .cpu_kernels import KernelRegistry, NDRange
from .errors import AppError, DeviceCompileError, DeviceRuntimeError
from .gpu_resources import DeviceBuffer, LocalMemory
from .profiling import ProfilingEvent
from .logger import get_logger

logger = get_logger(__name__)

KernelArg = Union[DeviceBuffer, LocalMemory]


@dataclass
class Kernel:
    """A built kernel: its name and the backend object that runs it."""
    name: str
    impl: Any


class Program:
    """The set of kernels built for one pipeline configuration."""

    def __init__(self, kernels: Mapping[str, Kernel], constants: Mapping[str, int]) -> None:
        self._kernels = dict(kernels)
        self.constants = dict(constants)

    def kernel(self, name: str) -> Kernel:
        if name not in self._kernels:
            raise DeviceRuntimeError(
                f"Kernel '{name}' is not part of the built program",
                operation="create kernel",
                code="invalid_kernel_name",
            )
        return self._kernels[name]

    @property
    def kernel_names(self) -> List[str]:
        return sorted(self._kernels)


class CommandQueue:
    """Interface shared by the CPU and wgpu queues."""

    backend: str = ""

    def build_program(self, kernel_names: Iterable[str], constants: Mapping[str, int]) -> Program:
        raise NotImplementedError

    def create_buffer(self, name: str, count: int, dtype: Any = np.uint32) -> DeviceBuffer:
        raise NotImplementedError

    def enqueue_write(self, buffer: DeviceBuffer, data: np.ndarray) -> ProfilingEvent:
        raise NotImplementedError

    def enqueue_kernel(
        self,
        kernel: Kernel,
        args: Sequence[KernelArg],
        global_size: int,
        local_size: Optional[int] = None,
    ) -> ProfilingEvent:
        raise NotImplementedError

    def enqueue_read(self, buffer: DeviceBuffer) -> Tuple[np.ndarray, ProfilingEvent]:
        raise NotImplementedError

    @staticmethod
    def _check_live(buffers: Iterable[Any], operation: str) -> None:
        for buf in buffers:
            if isinstance(buf, DeviceBuffer) and buf.released:
                raise DeviceRuntimeError(
                    f"Buffer '{buf.name}' used after release",
                    operation=operation,
                    code="invalid_mem_object",
                )


class CPUCommandQueue(CommandQueue):
    """
    In-order queue executing NumPy kernels synchronously on the host.

    Kernels run at submission, so 'started' follows 'submitted' immediately
    and the profile reflects pure host execution time.
    """

    backend = "cpu"

    def build_program(self, kernel_names: Iterable[str], constants: Mapping[str, int]) -> Program:
        # Importing the processing package registers its kernels
        import histogram_equalizer.processing  # noqa: F401

        kernel_names = list(kernel_names)
        kernels: Dict[str, Kernel] = {}
        log_lines = []
        for name in kernel_names:
            impl = KernelRegistry.get(name)
            if impl is None:
                log_lines.append(f"error: kernel '{name}' not found in program")
                continue
            kernels[name] = Kernel(name, impl)

        if log_lines:
            raise DeviceCompileError(
                "Program build failed",
                kernel_name=", ".join(n for n in kernel_names if n not in kernels),
                build_log="\n".join(log_lines),
            )
        logger.debug("Built CPU program: %s", ", ".join(sorted(kernels)))
        return Program(kernels, constants)

    def create_buffer(self, name: str, count: int, dtype: Any = np.uint32) -> DeviceBuffer:
        if count < 0:
            raise DeviceRuntimeError(
                f"Negative size for buffer '{name}'",
                operation="create buffer",
                code="invalid_buffer_size",
            )
        try:
            host = np.zeros(count, dtype=dtype)
        except MemoryError as e:
            raise DeviceRuntimeError(
                f"Out of memory allocating buffer '{name}'",
                operation="create buffer",
                code="mem_object_allocation_failure",
                original_error=e,
            ) from e
        return DeviceBuffer(name, count, dtype, host=host)

    def enqueue_write(self, buffer: DeviceBuffer, data: np.ndarray) -> ProfilingEvent:
        queued = time.perf_counter_ns()
        self._check_live([buffer], "write buffer")
        data = np.asarray(data).ravel()
        if data.size > buffer.count:
            raise DeviceRuntimeError(
                f"Write of {data.size} elements exceeds buffer '{buffer.name}' ({buffer.count})",
                operation="write buffer",
                code="invalid_value",
            )
        submitted = time.perf_counter_ns()
        started = time.perf_counter_ns()
        buffer.host[:data.size] = data
        ended = time.perf_counter_ns()
        return ProfilingEvent(queued, submitted, started, ended, label=f"write {buffer.name}")

    def enqueue_kernel(
        self,
        kernel: Kernel,
        args: Sequence[KernelArg],
        global_size: int,
        local_size: Optional[int] = None,
    ) -> ProfilingEvent:
        queued = time.perf_counter_ns()
        self._check_live(args, f"enqueue {kernel.name}")
        if local_size is not None and (local_size <= 0 or global_size % local_size):
            raise DeviceRuntimeError(
                f"Global size {global_size} is not a multiple of work-group size {local_size}",
                operation=f"enqueue {kernel.name}",
                code="invalid_work_group_size",
            )

        bound = [a.host if isinstance(a, DeviceBuffer) else a for a in args]
        ndrange = NDRange(global_size, local_size)
        submitted = time.perf_counter_ns()

        started = time.perf_counter_ns()
        try:
            kernel.impl(ndrange, *bound)
        except AppError:
            raise
        except Exception as e:
            raise DeviceRuntimeError(
                f"Kernel {kernel.name} failed: {e}",
                operation=f"execute {kernel.name}",
                code="execution_failure",
                original_error=e,
            ) from e
        ended = time.perf_counter_ns()
        return ProfilingEvent(queued, submitted, started, ended, label=kernel.name)

    def enqueue_read(self, buffer: DeviceBuffer) -> Tuple[np.ndarray, ProfilingEvent]:
        queued = time.perf_counter_ns()
        self._check_live([buffer], "read buffer")
        submitted = time.perf_counter_ns()
        started = time.perf_counter_ns()
        data = buffer.host.copy()
        ended = time.perf_counter_ns()
        return data, ProfilingEvent(queued, submitted, started, ended, label=f"read {buffer.name}")


class WgpuCommandQueue(CommandQueue):
    """In-order queue on a wgpu device running the WGSL kernels."""

    backend = "wgpu"

    def __init__(self, device) -> None:
        self._device = device
        self._gpu = device.wgpu_device
        if self._gpu is None:
            raise DeviceRuntimeError("wgpu device not initialised", operation="create queue")
        from histogram_equalizer.config import settings
        self._workgroup_size = settings.GPU_SETTINGS["workgroup_size"]

    def build_program(self, kernel_names: Iterable[str], constants: Mapping[str, int]) -> Program:
        from .gpu_shaders import ShaderLoader

        constants = dict(constants)
        constants.setdefault("WORKGROUP_SIZE", self._workgroup_size)
        kernels: Dict[str, Kernel] = {}
        for name in kernel_names:
            module = ShaderLoader.load(name, constants)
            try:
                pipeline = self._gpu.create_compute_pipeline(
                    layout="auto",
                    compute={"module": module, "entry_point": "main"},
                )
            except Exception as e:
                raise DeviceCompileError(
                    f"Failed to create pipeline for kernel {name}",
                    kernel_name=name,
                    build_log=str(e),
                    original_error=e,
                ) from e
            kernels[name] = Kernel(name, pipeline)
        return Program(kernels, constants)

    def create_buffer(self, name: str, count: int, dtype: Any = np.uint32) -> DeviceBuffer:
        import wgpu

        dtype = np.dtype(dtype)
        if dtype.itemsize != 4:
            raise DeviceRuntimeError(
                f"Buffer '{name}' must hold 32-bit elements, got {dtype.name}",
                operation="create buffer",
                code="invalid_value",
            )
        try:
            # Zero-sized storage bindings are invalid; empty images get one padding word
            handle = self._gpu.create_buffer(
                label=name,
                size=max(count, 1) * 4,
                usage=wgpu.BufferUsage.STORAGE | wgpu.BufferUsage.COPY_SRC | wgpu.BufferUsage.COPY_DST,
            )
        except Exception as e:
            raise DeviceRuntimeError(
                f"Failed to allocate buffer '{name}'",
                operation="create buffer",
                code=type(e).__name__,
                original_error=e,
            ) from e
        return DeviceBuffer(name, count, dtype, handle=handle)

    def enqueue_write(self, buffer: DeviceBuffer, data: np.ndarray) -> ProfilingEvent:
        queued = time.perf_counter_ns()
        self._check_live([buffer], "write buffer")
        data = np.ascontiguousarray(np.asarray(data).ravel(), dtype=buffer.dtype)
        if data.size > buffer.count:
            raise DeviceRuntimeError(
                f"Write of {data.size} elements exceeds buffer '{buffer.name}' ({buffer.count})",
                operation="write buffer",
                code="invalid_value",
            )
        submitted = time.perf_counter_ns()
        started = submitted
        try:
            if data.size:
                self._gpu.queue.write_buffer(buffer.handle, 0, data)
            self._wait_idle()
        except Exception as e:
            raise DeviceRuntimeError(
                f"Failed to write buffer '{buffer.name}'",
                operation="write buffer",
                code=type(e).__name__,
                original_error=e,
            ) from e
        ended = time.perf_counter_ns()
        return ProfilingEvent(queued, submitted, started, ended, label=f"write {buffer.name}")

    def _dispatch_size(self, global_size: int) -> Tuple[int, int]:
        """Workgroup grid for a 1-D range, folded into 2-D above the per-dim limit."""
        groups = -(-global_size // self._workgroup_size)
        limit = self._device.max_workgroups_per_dim
        if groups <= limit:
            return groups, 1
        return limit, -(-groups // limit)

    def enqueue_kernel(
        self,
        kernel: Kernel,
        args: Sequence[KernelArg],
        global_size: int,
        local_size: Optional[int] = None,
    ) -> ProfilingEvent:
        import wgpu

        queued = time.perf_counter_ns()
        self._check_live(args, f"enqueue {kernel.name}")
        if local_size is not None and local_size > self._workgroup_size:
            raise DeviceRuntimeError(
                f"Work-group size {local_size} exceeds the compiled size {self._workgroup_size}",
                operation=f"enqueue {kernel.name}",
                code="invalid_work_group_size",
            )

        # Local memory is declared as workgroup variables inside the kernel
        buffers = [a for a in args if isinstance(a, DeviceBuffer)]
        pipeline = kernel.impl
        try:
            entries = [
                {
                    "binding": index,
                    "resource": {"buffer": buf.handle, "offset": 0, "size": buf.handle.size},
                }
                for index, buf in enumerate(buffers)
            ]
            bind_group = self._gpu.create_bind_group(
                layout=pipeline.get_bind_group_layout(0), entries=entries
            )

            encoder = self._gpu.create_command_encoder()
            query_set = resolve_buf = None
            pass_args = {}
            if self._device.supports_timestamps:
                query_set = self._gpu.create_query_set(type=wgpu.QueryType.timestamp, count=2)
                resolve_buf = self._gpu.create_buffer(
                    size=16, usage=wgpu.BufferUsage.QUERY_RESOLVE | wgpu.BufferUsage.COPY_SRC
                )
                pass_args["timestamp_writes"] = {
                    "query_set": query_set,
                    "beginning_of_pass_write_index": 0,
                    "end_of_pass_write_index": 1,
                }

            pass_enc = encoder.begin_compute_pass(**pass_args)
            pass_enc.set_pipeline(pipeline)
            pass_enc.set_bind_group(0, bind_group)
            groups_x, groups_y = self._dispatch_size(max(global_size, 1))
            pass_enc.dispatch_workgroups(groups_x, groups_y)
            pass_enc.end()
            if query_set is not None:
                encoder.resolve_query_set(query_set, 0, 2, resolve_buf, 0)

            submitted = time.perf_counter_ns()
            self._gpu.queue.submit([encoder.finish()])
            started = time.perf_counter_ns()

            if resolve_buf is not None:
                stamps = self._read_raw(resolve_buf, 16).view(np.uint64)
                ended = started + int(stamps[1] - stamps[0])
                resolve_buf.destroy()
                query_set.destroy()
            else:
                self._wait_idle()
                ended = time.perf_counter_ns()
        except AppError:
            raise
        except Exception as e:
            raise DeviceRuntimeError(
                f"Kernel {kernel.name} failed: {e}",
                operation=f"enqueue {kernel.name}",
                code=type(e).__name__,
                original_error=e,
            ) from e
        return ProfilingEvent(queued, submitted, started, ended, label=kernel.name)

    def enqueue_read(self, buffer: DeviceBuffer) -> Tuple[np.ndarray, ProfilingEvent]:
        queued = time.perf_counter_ns()
        self._check_live([buffer], "read buffer")
        submitted = time.perf_counter_ns()
        started = submitted
        try:
            raw = self._read_raw(buffer.handle, max(buffer.count, 1) * 4)
        except Exception as e:
            raise DeviceRuntimeError(
                f"Failed to read buffer '{buffer.name}'",
                operation="read buffer",
                code=type(e).__name__,
                original_error=e,
            ) from e
        ended = time.perf_counter_ns()
        data = raw.view(buffer.dtype)[:buffer.count].copy()
        return data, ProfilingEvent(queued, submitted, started, ended, label=f"read {buffer.name}")

    def _read_raw(self, source: Any, nbytes: int) -> np.ndarray:
        """Synchronously copies a device buffer into host memory."""
        import wgpu

        read_buf = self._gpu.create_buffer(
            size=nbytes,
            usage=wgpu.BufferUsage.COPY_DST | wgpu.BufferUsage.MAP_READ,
        )
        encoder = self._gpu.create_command_encoder()
        encoder.copy_buffer_to_buffer(source, 0, read_buf, 0, nbytes)
        self._gpu.queue.submit([encoder.finish()])
        read_buf.map_sync(wgpu.MapMode.READ)
        data = np.frombuffer(read_buf.read_mapped(), dtype=np.uint8).copy()
        read_buf.unmap()
        read_buf.destroy()
        return data

    def _wait_idle(self) -> None:
        """Lets the device finish submitted work; read-backs already block in map_sync."""
        self._device.poll()
