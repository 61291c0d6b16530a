"""Error handling framework for drift scanning operations."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass
from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
)
from driftscan.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    """Categories of errors that can occur during a scan."""
    CONFIGURATION = "configuration"
    STATE = "state"
    PROVIDER = "provider"
    NETWORK = "network"
    PERMISSION = "permission"
    DEPENDENCY = "dependency"
    LOCK = "lock"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Scan of the environment cannot continue
    ERROR = "error"  # Operation failed, caller may retry later
    WARNING = "warning"  # Non-fatal issue
    INFO = "info"  # Informational message


@dataclass
class ErrorContext:
    """Context information for an error."""
    environment: Optional[str] = None
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    provider: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class ScanError(Exception):
    """Base exception for scan errors."""

    code = "ScanError"  # Stable identifier used in reports
    retryable = False

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize scan error.

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

    def with_context(self, **fields: Any) -> 'ScanError':
        """Fill in context fields that are not set yet and return self."""
        for key, value in fields.items():
            if getattr(self.context, key, None) is None:
                setattr(self.context, key, value)
        return self

    def to_user_message(self) -> str:
        """Convert error to user-friendly message.

        Returns:
            Formatted error message for display to user
        """
        lines = [f"{self.severity.value.upper()}: {self.message}"]

        if self.context.environment:
            lines.append(f"   Environment: {self.context.environment}")
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
            'code': self.code,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'retryable': self.retryable,
            'context': {
                'environment': self.context.environment,
                'resource_id': self.context.resource_id,
                'resource_type': self.context.resource_type,
                'operation': self.context.operation,
                'provider': self.context.provider,
                'request_id': self.context.request_id,
                'additional_info': self.context.additional_info
            },
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class ConfigurationError(ScanError):
    """Error in configuration file or settings."""

    code = "Configuration"

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class ConfigValidationError(ConfigurationError):
    """Configuration failed schema validation."""

    code = "ConfigValidation"

    def __init__(self, message: str, errors: Optional[List[Dict]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class NotFoundError(ScanError):
    """Environment is not registered or its declaration does not exist."""

    code = "NotFound"

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class CorruptStateError(ScanError):
    """Stored declaration or snapshot cannot be parsed."""

    code = "Corrupt"

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class UnreachableError(ScanError):
    """Provider is temporarily unavailable."""

    code = "Unreachable"
    retryable = True

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )


class PermissionDeniedError(ScanError):
    """Provider refused access to a resource."""

    code = "PermissionDenied"

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PERMISSION,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class UnsupportedResourceError(ScanError):
    """Provider cannot observe this resource type."""

    code = "UnsupportedResource"

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.PROVIDER,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class DependencyError(ScanError):
    """Error related to resource dependencies."""

    code = "Dependency"

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.DEPENDENCY,
            severity=ErrorSeverity.CRITICAL,
            **kwargs
        )


class CyclicDependencyError(DependencyError):
    """Declared dependencies contain a cycle."""

    code = "CyclicDependency"

    def __init__(self, message: str, cycle: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.cycle = cycle or []


class EnvironmentLockedError(ScanError):
    """Another plan already holds the environment lock."""

    code = "EnvironmentLocked"
    retryable = True

    def __init__(self, message: str, holder: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.LOCK,
            severity=ErrorSeverity.ERROR,
            **kwargs
        )
        self.holder = holder


class ScanCancelledError(ScanError):
    """Scan was cancelled before it finished."""

    code = "Cancelled"

    def __init__(self, message: str = "Scan cancelled", **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.CANCELLED,
            severity=ErrorSeverity.WARNING,
            **kwargs
        )


class ErrorHandler:
    """Translates provider SDK errors into the scan error taxonomy."""

    PERMISSION_ERROR_CODES = {
        'AccessDenied',
        'AccessDeniedException',
        'UnauthorizedOperation',
        'AuthorizationError',
        'InvalidClientTokenId',
        'SignatureDoesNotMatch',
        'ExpiredToken',
        'ExpiredTokenException',
    }

    UNREACHABLE_ERROR_CODES = {
        'RequestTimeout',
        'RequestTimeoutException',
        'ServiceUnavailable',
        'ServiceUnavailableException',
        'Throttling',
        'ThrottlingException',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'RequestThrottled',
        'InternalError',
        'InternalFailure',
        'ServiceException',
    }

    def __init__(self):
        """Initialize error handler."""
        self.logger = get_logger(__name__)

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ScanError:
        """Handle an exception and convert to ScanError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            ScanError with categorization and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, ScanError):
            return error

        if isinstance(error, ClientError):
            return self._handle_client_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return PermissionDeniedError(
                f"Provider credentials missing or incomplete: {error}",
                context=context,
                cause=error,
                suggestions=[
                    'Configure credentials for the provider profile',
                    'Verify credentials using: aws sts get-caller-identity'
                ]
            )

        if isinstance(error, (EndpointConnectionError, ConnectionError, TimeoutError)):
            return UnreachableError(
                f"Provider unreachable: {error}",
                context=context,
                cause=error,
                suggestions=['Check network connectivity to the provider endpoint']
            )

        return ScanError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _handle_client_error(self, error: ClientError, context: ErrorContext) -> ScanError:
        """Handle AWS ClientError."""
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

        if error_code in self.PERMISSION_ERROR_CODES:
            return PermissionDeniedError(
                f"Access denied ({error_code}): {error_message}",
                context=context,
                cause=error,
                suggestions=[
                    'Check IAM policies attached to the scanning role',
                    'Grant read-only (Describe*/Get*/List*) permissions for scanned services'
                ]
            )

        if error_code in self.UNREACHABLE_ERROR_CODES:
            return UnreachableError(
                f"Provider unavailable ({error_code}): {error_message}",
                context=context,
                cause=error
            )

        return ScanError(
            message=f"Provider error ({error_code}): {error_message}",
            category=ErrorCategory.PROVIDER,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=[f'Request ID: {context.request_id}']
        )

    def log_error(self, error: ScanError):
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
