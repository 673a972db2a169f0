"""Utility modules for logging, error classification and retries."""

from reconciler.utils.retry import RetryStrategy
from reconciler.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ReconcileError,
    ConfigurationError,
    PlanError,
    ReferenceError,
    CycleError,
    DuplicateResourceError,
    StoreUnavailable,
    ProviderError,
    TransientProviderError,
    PermanentProviderError,
    ErrorHandler,
    error_handler
)
from reconciler.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # Retry
    'RetryStrategy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ReconcileError',
    'ConfigurationError',
    'PlanError',
    'ReferenceError',
    'CycleError',
    'DuplicateResourceError',
    'StoreUnavailable',
    'ProviderError',
    'TransientProviderError',
    'PermanentProviderError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
