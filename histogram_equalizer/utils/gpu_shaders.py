"""
GPU Shader Loader - Compiles and caches WGSL kernels.

Kernel sources live in histogram_equalizer/kernels/<name>.wgsl and carry
{{PLACEHOLDER}} tokens (bin count, work-group size) that are substituted
before compilation, so one compiled module exists per constant set.
"""

import os
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import DeviceCompileError
from .logger import get_logger

logger = get_logger(__name__)

# Shader directory
SHADER_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "kernels")

_PLACEHOLDER = re.compile(r"\{\{([A-Z_]+)\}\}")


class ShaderLoader:
    """
    On-demand WGSL shader compiler with caching.
    Reduces pipeline initialization overhead by reusing compiled modules.
    """

    _cache: Dict[Tuple[str, Tuple[Tuple[str, int], ...]], Any] = {}

    @classmethod
    def render_source(cls, shader_name: str, constants: Optional[Mapping[str, int]] = None) -> str:
        """
        Read a kernel source and substitute its placeholders.

        Raises:
            DeviceCompileError: If the file is missing or a placeholder has no value.
        """
        path = cls.get_shader_path(shader_name)
        if not os.path.exists(path):
            raise DeviceCompileError(
                f"Kernel source not found: {shader_name}",
                kernel_name=shader_name,
                build_log=f"error: no such file '{path}'",
            )

        with open(path, "r") as f:
            code = f.read()

        constants = dict(constants or {})
        missing = sorted({m for m in _PLACEHOLDER.findall(code) if m not in constants})
        if missing:
            raise DeviceCompileError(
                f"Kernel {shader_name} needs constants: {', '.join(missing)}",
                kernel_name=shader_name,
                build_log="\n".join(f"error: undefined constant '{m}'" for m in missing),
            )
        return _PLACEHOLDER.sub(lambda m: str(int(constants[m.group(1)])), code)

    @classmethod
    def load(cls, shader_name: str, constants: Optional[Mapping[str, int]] = None) -> Any:
        """
        Load and compile a shader by name.

        Args:
            shader_name: Name of the shader file (without .wgsl extension)
            constants: Values for the {{PLACEHOLDER}} tokens

        Returns:
            Compiled wgpu shader module
        """
        key = (shader_name, tuple(sorted((constants or {}).items())))
        if key in cls._cache:
            return cls._cache[key]

        code = cls.render_source(shader_name, constants)

        from .gpu_device import ComputeDevice
        gpu = ComputeDevice.get()

        if not gpu.is_wgpu or not gpu.wgpu_device:
            raise DeviceCompileError(
                "wgpu device required for shader compilation",
                kernel_name=shader_name,
            )

        try:
            module = gpu.wgpu_device.create_shader_module(label=shader_name, code=code)
        except Exception as e:
            # wgpu reports naga's diagnostics in the exception text
            raise DeviceCompileError(
                f"Failed to compile kernel {shader_name}",
                kernel_name=shader_name,
                build_log=str(e),
                original_error=e,
            ) from e

        cls._cache[key] = module
        logger.debug(f"Compiled shader: {shader_name} {dict(key[1])}")
        return module

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the shader cache."""
        cls._cache.clear()

    @classmethod
    def get_shader_path(cls, shader_name: str) -> str:
        """Get the full path to a shader file."""
        return os.path.join(SHADER_DIR, f"{shader_name}.wgsl")

    @classmethod
    def shader_exists(cls, shader_name: str) -> bool:
        """Check if a shader file exists."""
        return os.path.exists(cls.get_shader_path(shader_name))
