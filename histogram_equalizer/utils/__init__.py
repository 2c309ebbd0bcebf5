# This file makes the 'utils' directory a Python package.

from .errors import (
    AppError,
    DecodeError,
    DeviceCompileError,
    DeviceRuntimeError,
    InvalidParameter,
    ErrorCategory,
    log_and_continue,
    format_user_error,
)
from .profiling import (
    ProfilingEvent,
    ProfilingReport,
    ProfilingResolution,
    ProfilingTotals,
    StageProfiler,
    StageTiming,
    get_full_profiling_info,
)

__all__ = [
    # Errors
    'AppError',
    'DecodeError',
    'DeviceCompileError',
    'DeviceRuntimeError',
    'InvalidParameter',
    'ErrorCategory',
    'log_and_continue',
    'format_user_error',
    # Profiling
    'ProfilingEvent',
    'ProfilingReport',
    'ProfilingResolution',
    'ProfilingTotals',
    'StageProfiler',
    'StageTiming',
    'get_full_profiling_info',
]
