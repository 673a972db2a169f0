"""Error handling framework for reconciliation runs."""

from typing import Optional, Dict, Any, List, Iterable
from enum import Enum
from dataclasses import dataclass
from reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during a run."""
    CONFIGURATION = "configuration"
    REFERENCE = "reference"
    DEPENDENCY = "dependency"
    STATE = "state"
    PROVIDER = "provider"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot continue
    ERROR = "error"  # Resource failed but the run continues
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    provider_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class ReconcileError(Exception):
    """Base exception for reconciliation errors."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize reconciliation error.

        Args:
            message: Human-readable error message
            category: Error category
            severity: Error severity
            context: Additional context about the error
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.resource_id:
            lines.append(f"   Resource: {self.context.resource_id}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")

        if self.cause:
            lines.append(f"   Cause: {str(self.cause)}")

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of the error
        """
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': {
                'resource_id': self.context.resource_id,
                'resource_type': self.context.resource_type,
                'operation': self.context.operation,
                'provider_id': self.context.provider_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigurationError(ReconcileError):
    """Error in configuration file or settings."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class PlanError(ReconcileError):
    """Build-time error that aborts a run before any remote mutation."""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.DEPENDENCY, **kwargs):
        super().__init__(
            message,
            category=category,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ReferenceError(PlanError):
    """A resource references an identity that is not in the desired set."""

    def __init__(self, message: str, source: Optional[str] = None, target: Optional[str] = None, **kwargs):
        kwargs.setdefault('context', ErrorContext(resource_id=source))
        kwargs.setdefault('suggestions', [
            f"Declare '{target}' in the desired state or remove the reference" if target
            else 'Declare the referenced resource or remove the reference'
        ])
        super().__init__(message, category=ErrorCategory.REFERENCE, **kwargs)
        self.source = source
        self.target = target


class CycleError(PlanError):
    """The dependency graph contains at least one cycle."""

    def __init__(self, message: str, identities: Iterable[str] = (), **kwargs):
        self.identities = sorted(identities)
        kwargs.setdefault('context', ErrorContext(
            additional_info={'identities': self.identities}
        ))
        kwargs.setdefault('suggestions', [
            'Remove one of the depends_on entries or references forming the cycle'
        ])
        super().__init__(message, category=ErrorCategory.DEPENDENCY, **kwargs)


class DuplicateResourceError(PlanError):
    """Two desired resources share one identity."""

    def __init__(self, message: str, identity: Optional[str] = None, **kwargs):
        kwargs.setdefault('context', ErrorContext(resource_id=identity))
        super().__init__(message, category=ErrorCategory.VALIDATION, **kwargs)
        self.identity = identity


class StoreUnavailable(ReconcileError):
    """The state store cannot be read or written.

    Callers must treat this as fatal and never fall back to an empty state,
    since planning against an empty state would re-create every resource.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault('suggestions', [
            'Check that the state location exists and is readable',
            'Restore the state from backup before running again'
        ])
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ProviderError(ReconcileError):
    """Error returned by a resource provider for a single node."""

    def __init__(
        self,
        message: str,
        code: str = 'unknown',
        transient: bool = False,
        category: Optional[ErrorCategory] = None,
        **kwargs
    ):
        super().__init__(
            message,
            category=category or ErrorCategory.PROVIDER,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )
        self.code = code
        self.transient = transient

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['code'] = self.code
        data['transient'] = self.transient
        return data


class TransientProviderError(ProviderError):
    """Provider error that is worth retrying (rate limit, timeout, 5xx)."""

    def __init__(self, message: str, code: str = 'transient', **kwargs):
        super().__init__(message, code=code, transient=True, **kwargs)


class PermanentProviderError(ProviderError):
    """Provider error that retrying cannot fix."""

    def __init__(self, message: str, code: str = 'permanent', **kwargs):
        super().__init__(message, code=code, transient=False, **kwargs)


class ErrorHandler:
    """Classifies errors raised by provider implementations."""

    # Provider error codes and their classification
    ERROR_CODE_MAPPING = {
        # Transient
        'rateLimitExceeded': {
            'transient': True,
            'category': ErrorCategory.RATE_LIMIT,
            'message': 'API rate limit exceeded',
        },
        'userRateLimitExceeded': {
            'transient': True,
            'category': ErrorCategory.RATE_LIMIT,
            'message': 'Per-user API rate limit exceeded',
        },
        'quotaExceeded': {
            'transient': True,
            'category': ErrorCategory.RATE_LIMIT,
            'message': 'API quota exceeded',
        },
        'backendError': {
            'transient': True,
            'category': ErrorCategory.NETWORK,
            'message': 'Provider backend error',
        },
        'resourceNotReady': {
            'transient': True,
            'category': ErrorCategory.PROVIDER,
            'message': 'Resource is not ready yet',
        },
        'timeout': {
            'transient': True,
            'category': ErrorCategory.NETWORK,
            'message': 'Request timed out',
        },
        'serviceUnavailable': {
            'transient': True,
            'category': ErrorCategory.NETWORK,
            'message': 'Provider service temporarily unavailable',
        },

        # Permanent
        'invalid': {
            'transient': False,
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter or configuration',
        },
        'forbidden': {
            'transient': False,
            'category': ErrorCategory.PROVIDER,
            'message': 'Permission denied',
        },
        'alreadyExists': {
            'transient': False,
            'category': ErrorCategory.PROVIDER,
            'message': 'Resource already exists',
        },
        'notFound': {
            'transient': False,
            'category': ErrorCategory.PROVIDER,
            'message': 'Resource not found',
        },
        'resourceInUseByAnotherResource': {
            'transient': False,
            'category': ErrorCategory.DEPENDENCY,
            'message': 'Resource is in use by another resource',
        },
    }

    # HTTP status codes that are worth retrying
    TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def classify(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ProviderError:
        """Convert any exception raised by a provider into a ProviderError.

        Args:
            error: The exception to classify
            context: Additional context about where the error occurred

        Returns:
            ProviderError with ``transient`` set
        """
        if isinstance(error, ProviderError):
            if context and not error.context.resource_id:
                error.context = context
            return error

        context = context or ErrorContext()

        # Client libraries expose a reason code and/or an HTTP status
        code = getattr(error, 'code', None)
        status = getattr(error, 'status', None)
        if isinstance(code, int) and status is None:
            code, status = None, code
        if isinstance(code, str) or isinstance(status, int):
            classified = self.from_code(
                code if isinstance(code, str) else f"http{status}",
                str(error) or type(error).__name__,
                status=status if isinstance(status, int) else None,
                context=context
            )
            classified.cause = error
            return classified

        if isinstance(error, (ConnectionError, TimeoutError)):
            return TransientProviderError(
                f"Network error: {str(error)}",
                code='network',
                category=ErrorCategory.NETWORK,
                context=context,
                cause=error,
                suggestions=['Check network connectivity to the provider API']
            )

        if isinstance(error, ReconcileError):
            return PermanentProviderError(
                error.message,
                code=error.category.value,
                category=error.category,
                context=context,
                cause=error
            )

        return PermanentProviderError(
            str(error) or type(error).__name__,
            code=type(error).__name__,
            category=ErrorCategory.UNKNOWN,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def from_code(
        self,
        code: str,
        message: str,
        status: Optional[int] = None,
        context: Optional[ErrorContext] = None
    ) -> ProviderError:
        """Build a classified ProviderError from a provider error code.

        Args:
            code: Provider error reason code (e.g. ``rateLimitExceeded``)
            message: Provider error message
            status: Optional HTTP status code
            context: Error context

        Returns:
            TransientProviderError or PermanentProviderError
        """
        info = self.ERROR_CODE_MAPPING.get(code)
        if info:
            transient = info['transient']
            category = info['category']
            message = f"{info['message']}: {message}"
        else:
            transient = status in self.TRANSIENT_STATUS_CODES
            category = ErrorCategory.PROVIDER

        error_cls = TransientProviderError if transient else PermanentProviderError
        return error_cls(message, code=code, category=category, context=context)

    def log_error(self, error: ReconcileError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
