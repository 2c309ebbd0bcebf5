"""
NumPy reference executor - kernel registry and work-item ranges.

Kernels for the CPU backend are plain functions that receive the NDRange they
were enqueued with followed by their arguments: NumPy views of device buffers
and LocalMemory descriptors. Each kernel emulates its WGSL counterpart's
work-group semantics (partial results per group, snapshot per scan step) so
both backends produce identical numbers.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class NDRange:
    """Global (and optional local) work-item range of one kernel launch."""
    global_size: int
    local_size: Optional[int] = None

    @property
    def group_size(self) -> int:
        return self.local_size or max(self.global_size, 1)

    @property
    def num_groups(self) -> int:
        if self.global_size == 0:
            return 0
        return -(-self.global_size // self.group_size)

    def groups(self) -> Iterator[Tuple[int, int, int]]:
        """Yields (group_id, first_item, end_item) for every work group."""
        size = self.group_size
        for group_id in range(self.num_groups):
            start = group_id * size
            yield group_id, start, min(start + size, self.global_size)


class KernelRegistry:
    """Name -> implementation table used when building a CPU program."""

    _kernels: Dict[str, Callable] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[Callable], Callable]:
        def decorator(func: Callable) -> Callable:
            if name in cls._kernels and cls._kernels[name] is not func:
                logger.warning("Kernel '%s' registered twice, keeping the latest", name)
            cls._kernels[name] = func
            return func
        return decorator

    @classmethod
    def get(cls, name: str) -> Optional[Callable]:
        return cls._kernels.get(name)

    @classmethod
    def names(cls) -> List[str]:
        return sorted(cls._kernels)


register_kernel = KernelRegistry.register
