# Centralized error handling utilities
"""
Provides consistent error handling patterns across the equalisation pipeline.

This module defines:
- Custom exception classes for the decode / compile / runtime failure kinds
- Utility functions for error logging and user messaging

Decode and device errors are fatal for a run: they are never retried and
never swapped for a CPU fallback. Only bin-count coercion is recoverable.
"""

from typing import Optional, Union
from enum import Enum

from .logger import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors for consistent handling."""
    RECOVERABLE = "recoverable"        # Can continue with a coerced value
    USER_INPUT = "user_input"          # Invalid user input
    FILE_IO = "file_io"                # Image decoding / file system errors
    DEVICE_COMPILE = "device_compile"  # Kernel build failures
    DEVICE_RUNTIME = "device_runtime"  # Allocation, submission, read-back


class AppError(Exception):
    """Base exception for application-specific errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        original_error: Optional[Exception] = None,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.category = category
        self.original_error = original_error
        self.user_message = user_message or message

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.args[0]} (caused by: {type(self.original_error).__name__})"
        return self.args[0]

    @property
    def is_fatal(self) -> bool:
        return self.category not in (ErrorCategory.RECOVERABLE, ErrorCategory.USER_INPUT)


class DecodeError(AppError):
    """Malformed or unreadable input image."""

    def __init__(self, message: str, file_path: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.FILE_IO, **kwargs)
        self.file_path = file_path


class DeviceCompileError(AppError):
    """Kernel build failure. Carries the raw build log."""

    def __init__(
        self,
        message: str,
        kernel_name: Optional[str] = None,
        build_log: str = "",
        **kwargs,
    ):
        super().__init__(message, category=ErrorCategory.DEVICE_COMPILE, **kwargs)
        self.kernel_name = kernel_name
        self.build_log = build_log


class DeviceRuntimeError(AppError):
    """Failure during buffer allocation, command submission or read-back."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: Optional[Union[int, str]] = None,
        **kwargs,
    ):
        super().__init__(message, category=ErrorCategory.DEVICE_RUNTIME, **kwargs)
        self.operation = operation
        self.code = code


class InvalidParameter(AppError):
    """A user parameter that had to be coerced. Never fatal."""

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.USER_INPUT, **kwargs)
        self.setting_name = setting_name


def log_and_continue(
    message: str,
    category: ErrorCategory = ErrorCategory.RECOVERABLE,
    level: str = "warning",
) -> None:
    """
    Log an error and continue execution.

    Use this for non-critical errors that shouldn't stop processing.

    Args:
        message: Error message to log.
        category: Error category for context.
        level: Log level.
    """
    log_func = getattr(logger, level, logger.warning)
    log_func("[%s] %s", category.value, message)


def format_user_error(error: Union[Exception, str], context: Optional[str] = None) -> str:
    """
    Format an error message for operator display.

    Compile errors include the build log and runtime errors include the
    failing operation and error code, so the operator has enough to act on.

    Args:
        error: The error or error message.
        context: Optional context about what operation failed.

    Returns:
        User-friendly error message.
    """
    if isinstance(error, DeviceCompileError):
        header = error.user_message
        if error.kernel_name:
            header = f"{header} [kernel: {error.kernel_name}]"
        if error.build_log:
            return f"{header}\nBuild log:\n{error.build_log}"
        return header

    if isinstance(error, DeviceRuntimeError):
        details = []
        if error.operation:
            details.append(f"operation: {error.operation}")
        if error.code is not None:
            details.append(f"code: {error.code}")
        if details:
            return f"{error.user_message} ({', '.join(details)})"
        return error.user_message

    if isinstance(error, AppError):
        return error.user_message

    error_str = str(error)

    if "No such file or directory" in error_str:
        return f"File not found{f' while {context}' if context else ''}"
    if "out of memory" in error_str.lower():
        return "Not enough device memory to complete this operation. Try with a smaller image."

    if context:
        return f"Error {context}: {error_str}"
    return f"An error occurred: {error_str}"
