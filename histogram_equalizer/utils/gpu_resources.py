"""
Device resource wrappers - buffers and local-memory descriptors.

A DeviceBuffer is created by a CommandQueue and owned by whoever created it
(the pipeline orchestrator for a run). On the CPU backend it is backed by a
NumPy array, on wgpu by a storage buffer.
"""

from dataclasses import dataclass
from typing import Any, Optional
import numpy as np

from .logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LocalMemory:
    """Size of a per-work-group scratch allocation, in bytes."""
    nbytes: int

    def words(self, itemsize: int = 4) -> int:
        return self.nbytes // itemsize


class DeviceBuffer:
    """
    A typed device buffer of `count` elements.

    Attributes:
        name: Label used in logs and error messages
        count: Number of elements
        dtype: Element type (32-bit on every backend)
        host: Backing array on the CPU backend, None on wgpu
        handle: wgpu buffer on the wgpu backend, None on CPU
    """

    def __init__(
        self,
        name: str,
        count: int,
        dtype: Any = np.uint32,
        host: Optional[np.ndarray] = None,
        handle: Optional[Any] = None,
    ) -> None:
        self.name = name
        self.count = int(count)
        self.dtype = np.dtype(dtype)
        self.host = host
        self.handle = handle
        self._released = False

    @property
    def nbytes(self) -> int:
        return self.count * self.dtype.itemsize

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Frees the device-side storage. Safe to call more than once."""
        if self._released:
            return
        if self.handle is not None and hasattr(self.handle, "destroy"):
            self.handle.destroy()
        self.handle = None
        self.host = None
        self._released = True
        logger.debug("Released buffer '%s' (%d bytes)", self.name, self.nbytes)

    def __repr__(self) -> str:
        state = "released" if self._released else f"{self.nbytes} bytes"
        return f"DeviceBuffer({self.name!r}, {self.count} x {self.dtype.name}, {state})"
