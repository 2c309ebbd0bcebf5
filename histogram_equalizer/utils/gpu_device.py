"""
Compute Device Manager - Unified interface for the wgpu and CPU backends.

This module provides a singleton compute device that abstracts the
underlying runtime: wgpu (Vulkan/Metal/DX12) when an adapter is present,
otherwise the NumPy reference executor.

The device is initialized once and reused for every pipeline run.
"""

from typing import Any, Dict, List, Optional

from histogram_equalizer.config import settings
from .errors import DeviceRuntimeError
from .logger import get_logger

logger = get_logger(__name__)

VALID_BACKENDS = ("auto", "wgpu", "cpu")


class ComputeDevice:
    """
    Singleton compute device supporting multiple backends.

    Backends (in priority order for "auto"):
    1. wgpu - WGSL compute shaders on the selected adapter
    2. cpu  - NumPy kernels with the same work-group semantics
    """

    _instance: Optional["ComputeDevice"] = None

    def __init__(self, backend: str = "auto", adapter_index: Optional[int] = None) -> None:
        if ComputeDevice._instance is not None:
            raise RuntimeError("ComputeDevice is a singleton - use ComputeDevice.get()")
        if backend not in VALID_BACKENDS:
            raise DeviceRuntimeError(
                f"Unknown compute backend '{backend}'",
                operation="device selection",
            )

        self.backend: Optional[str] = None  # "wgpu" or "cpu"
        self.device_name: Optional[str] = None
        self.adapter_index = adapter_index

        # wgpu-specific
        self._wgpu_adapter: Optional[Any] = None
        self._wgpu_device: Optional[Any] = None
        self._wgpu_limits: Dict[str, Any] = {}
        self._timestamps = False

        self._initialize(backend)

    @classmethod
    def get(cls) -> "ComputeDevice":
        """Get the singleton device, creating it from settings on first use."""
        if cls._instance is None:
            cls._instance = ComputeDevice(settings.GPU_SETTINGS.get("backend", "auto"))
        return cls._instance

    @classmethod
    def configure(cls, backend: str = "auto", adapter_index: Optional[int] = None) -> "ComputeDevice":
        """Replace the singleton with a device on an explicit backend/adapter."""
        cls.reset()
        cls._instance = ComputeDevice(backend, adapter_index)
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (mainly for testing)."""
        from .gpu_shaders import ShaderLoader

        if cls._instance is not None:
            cls._instance._cleanup()
            cls._instance = None
        # Compiled modules belong to the discarded device
        ShaderLoader.clear_cache()

    def _initialize(self, backend: str) -> None:
        """Initialize the requested backend."""
        if backend in ("auto", "wgpu"):
            if self._try_wgpu():
                return
            if backend == "wgpu":
                raise DeviceRuntimeError(
                    "wgpu backend requested but no usable adapter was found",
                    operation="device selection",
                )

        logger.info("No GPU adapter selected. Using the NumPy reference executor.")
        self.backend = "cpu"
        self.device_name = "CPU (NumPy)"

    def _try_wgpu(self) -> bool:
        """Attempt to initialize wgpu backend."""
        try:
            import wgpu

            if self.adapter_index is not None:
                adapters = wgpu.gpu.enumerate_adapters_sync()
                if not 0 <= self.adapter_index < len(adapters):
                    raise DeviceRuntimeError(
                        f"Adapter index {self.adapter_index} out of range "
                        f"({len(adapters)} adapters available)",
                        operation="device selection",
                    )
                adapter = adapters[self.adapter_index]
            else:
                adapter = wgpu.gpu.request_adapter_sync(
                    power_preference=settings.GPU_SETTINGS.get("power_preference", "high-performance")
                )

            if adapter is None:
                logger.debug("wgpu: No compatible GPU adapter found")
                return False

            # Kernel timestamps need an optional feature
            features = []
            if "timestamp-query" in adapter.features:
                features.append("timestamp-query")
            device = adapter.request_device_sync(required_features=features)

            if device is None:
                logger.debug("wgpu: Failed to create device")
                return False

            summary = str(adapter.summary)
            backend_name = "WebGPU"
            if "(" in summary:
                backend_name = summary.split("(")[-1].replace(")", "").strip()

            self._wgpu_adapter = adapter
            self._wgpu_device = device
            self._wgpu_limits = dict(device.limits) if hasattr(device, 'limits') else {}
            self._timestamps = bool(features)
            self.backend = "wgpu"
            self.device_name = f"{summary.split('(')[0].strip()} ({backend_name})"

            logger.info(f"Running on {self.device_name}")
            if not self._timestamps:
                logger.info("Adapter has no timestamp queries; kernel times are host-measured")
            return True

        except ImportError:
            logger.debug("wgpu not installed")
        except DeviceRuntimeError:
            raise
        except Exception as e:
            logger.debug(f"wgpu initialization failed: {e}")

        return False

    def _cleanup(self) -> None:
        """Release device resources."""
        self._wgpu_adapter = None
        self._wgpu_device = None

    @staticmethod
    def list_adapters() -> List[str]:
        """Describe every adapter wgpu can see ("-l" on the command line)."""
        try:
            import wgpu
        except ImportError:
            return ["0: CPU (NumPy) - wgpu not installed"]

        lines = []
        for index, adapter in enumerate(wgpu.gpu.enumerate_adapters_sync()):
            lines.append(f"{index}: {adapter.summary}")
        if not lines:
            lines.append("0: CPU (NumPy) - no wgpu adapters found")
        return lines

    @property
    def is_available(self) -> bool:
        """True once a backend has been selected."""
        return self.backend is not None

    @property
    def is_wgpu(self) -> bool:
        """True if using wgpu backend."""
        return self.backend == "wgpu"

    @property
    def is_cpu(self) -> bool:
        return self.backend == "cpu"

    @property
    def wgpu_device(self) -> Optional[Any]:
        """Get the wgpu device (None if not using wgpu)."""
        return self._wgpu_device

    @property
    def supports_timestamps(self) -> bool:
        return self._timestamps

    @property
    def max_workgroups_per_dim(self) -> int:
        if self.is_wgpu and self._wgpu_limits:
            return self._wgpu_limits.get(
                "max-compute-workgroups-per-dimension",
                settings.GPU_SETTINGS["max_workgroups_per_dim"],
            )
        return settings.GPU_SETTINGS["max_workgroups_per_dim"]

    def get_info(self) -> Dict[str, Any]:
        """Get device information for display."""
        return {
            "enabled": self.is_available,
            "backend": self.backend,
            "device_name": self.device_name,
            "is_wgpu": self.is_wgpu,
            "timestamps": self._timestamps,
        }

    def create_queue(self):
        """Create a profiling-enabled in-order command queue on this device."""
        from .compute_queue import CPUCommandQueue, WgpuCommandQueue

        if self.is_wgpu:
            return WgpuCommandQueue(self)
        return CPUCommandQueue()

    def poll(self) -> None:
        """Force GPU queue processing (wgpu only)."""
        if self.is_wgpu and self._wgpu_device:
            if hasattr(self._wgpu_device, "poll"):
                self._wgpu_device.poll()
            elif hasattr(self._wgpu_device, "_poll"):
                self._wgpu_device._poll()
