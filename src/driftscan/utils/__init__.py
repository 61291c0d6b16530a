"""Utility modules for logging, error handling and retries."""

from driftscan.utils.retry import RetryStrategy
from driftscan.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ScanError,
    ConfigurationError,
    ConfigValidationError,
    NotFoundError,
    CorruptStateError,
    UnreachableError,
    PermissionDeniedError,
    UnsupportedResourceError,
    DependencyError,
    CyclicDependencyError,
    EnvironmentLockedError,
    ScanCancelledError,
    ErrorHandler,
    error_handler
)
from driftscan.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ScanError',
    'ConfigurationError',
    'ConfigValidationError',
    'NotFoundError',
    'CorruptStateError',
    'UnreachableError',
    'PermissionDeniedError',
    'UnsupportedResourceError',
    'DependencyError',
    'CyclicDependencyError',
    'EnvironmentLockedError',
    'ScanCancelledError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
