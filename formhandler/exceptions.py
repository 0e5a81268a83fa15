"""
Exception hierarchy for the form handler.

Only fatal conditions are modelled as exceptions. Per-field validation failures are
never raised; they are recorded in the handler's error bag instead.

Key Features:
- Hierarchical exception classes sharing one structured base
- Structured logging of every raised error through structlog
- Prometheus counter of fatal errors by code and category
- Dictionary serialization for API or log payloads
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog
from prometheus_client import Counter


fatal_error_counter = Counter(
    'formhandler_fatal_errors_total',
    'Total number of fatal form handler errors by type',
    ['error_type', 'error_category']
)

# Get structured logger
logger = structlog.get_logger(__name__)


class ErrorCategory(Enum):
    """Error categories for hierarchical classification."""

    CONFIGURATION = "configuration"
    STATE = "state"
    RULE_DEFINITION = "rule_definition"
    VALIDATION = "validation"
    FILE_SYSTEM = "file_system"
    DATABASE = "database"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FormHandlerError(Exception):
    """
    Base exception class for all fatal form handler errors.

    Attributes:
        message: Human-readable error message
        code: Error code, defaults to the class name
        category: Error category for classification
        severity: Error severity level
        details: Additional error context
        correlation_id: Unique identifier for error tracking
    """

    def __init__(
        self,
        message: str,
        code: str = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.correlation_id = correlation_id or str(uuid4())
        self.timestamp = datetime.now(timezone.utc).isoformat()

        self._log_error()
        self._update_metrics()

    def _log_error(self) -> None:
        """Log error with structured logging."""
        log_data = {
            'error_code': self.code,
            'error_category': self.category.value,
            'error_severity': self.severity.value,
            'correlation_id': self.correlation_id,
            'details': self.details,
            'timestamp': self.timestamp
        }

        if self.severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]:
            logger.error(self.message, **log_data)
        elif self.severity == ErrorSeverity.MEDIUM:
            logger.warning(self.message, **log_data)
        else:
            logger.info(self.message, **log_data)

    def _update_metrics(self) -> None:
        fatal_error_counter.labels(
            error_type=self.code,
            error_category=self.category.value
        ).inc()

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary format.

        Returns:
            Dictionary representation of the error
        """
        return {
            'error': True,
            'message': self.message,
            'code': self.code,
            'category': self.category.value,
            'severity': self.severity.value,
            'correlation_id': self.correlation_id,
            'timestamp': self.timestamp,
            'details': self.details
        }


class ConfigurationError(FormHandlerError):
    """Raised when environment configuration holds an unsupported value."""

    def __init__(self, message: str = "Invalid configuration", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


class DataSourceNotSetError(FormHandlerError):
    """Raised when execute() runs before a data source is assigned."""

    def __init__(self, message: str = "no data source set", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class RulesNotSetError(FormHandlerError):
    """Raised when execute() runs before field rules are assigned."""

    def __init__(self, message: str = "no field rules set", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class FilesSourceNotSetError(FormHandlerError):
    """Raised when a file field is declared but no files source was given."""

    def __init__(self, message: str = "no files source set", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class StateError(FormHandlerError):
    """Raised when a single-use handler is executed more than once."""

    def __init__(self, message: str = "cannot execute a handler more than once", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class RuleDefinitionError(FormHandlerError):
    """Raised for rule declarations that cannot be resolved, such as an unknown type."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop('details', {}) or {}
        if field is not None:
            details['field'] = field
        super().__init__(
            message=message,
            category=ErrorCategory.RULE_DEFINITION,
            severity=ErrorSeverity.HIGH,
            details=details,
            **kwargs
        )
        self.field = field


class InvalidDateError(FormHandlerError):
    """Raised when a date limiting bound cannot be turned into a calendar date."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.RULE_DEFINITION,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


class DirectoryNotFoundError(FormHandlerError):
    """Raised when the relocation directory of an upload does not exist."""

    def __init__(self, directory: str, **kwargs):
        super().__init__(
            message=f"{directory} does not exist",
            category=ErrorCategory.FILE_SYSTEM,
            severity=ErrorSeverity.HIGH,
            details={'directory': directory},
            **kwargs
        )
        self.directory = directory


class FileMoveError(FormHandlerError):
    """Raised when an uploaded file could not be renamed into its target directory."""

    def __init__(self, message: str = "Error occured while moving uploaded file", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.FILE_SYSTEM,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


class DatabaseCheckError(FormHandlerError):
    """Raised when the counting adapter fails during an existence check."""

    def __init__(self, message: str = "Database existence check failed", **kwargs):
        super().__init__(
            message=message,
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'FormHandlerError',
    'ConfigurationError',
    'DataSourceNotSetError',
    'RulesNotSetError',
    'FilesSourceNotSetError',
    'StateError',
    'RuleDefinitionError',
    'InvalidDateError',
    'DirectoryNotFoundError',
    'FileMoveError',
    'DatabaseCheckError',
]
