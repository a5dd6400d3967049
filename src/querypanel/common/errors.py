from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(str, Enum):
    """Severity levels for query errors."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCode(str, Enum):
    """Standardized error codes surfaced to callers."""
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    ACCESS_DENIED = "ACCESS_DENIED"
    QUERY_INVALID = "QUERY_INVALID"
    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    CANCELLED = "CANCELLED"


FATAL_ERRORS = {
    ErrorCode.CONFIGURATION_ERROR,
    ErrorCode.ACCESS_DENIED,
    ErrorCode.TRANSPORT_ERROR,
    ErrorCode.CANCELLED,
}


class QueryPanelError(Exception):
    """Base class for every error raised by this package.

    Attributes:
        message (str): A human-readable error message.
        error_code (ErrorCode): The standardized error code.
        severity (ErrorSeverity): The severity of the error.
        details (Optional[Any]): Additional context or metadata.
    """

    error_code: ErrorCode = ErrorCode.QUERY_EXECUTION_FAILED
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def is_retryable(self) -> bool:
        """Determines if this error should trigger another repair attempt."""
        if self.severity == ErrorSeverity.CRITICAL:
            return False
        return self.error_code not in FATAL_ERRORS

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error_code": self.error_code.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ConfigurationError(QueryPanelError):
    """Missing or invalid attachment, credential or option at setup time."""

    error_code = ErrorCode.CONFIGURATION_ERROR
    severity = ErrorSeverity.CRITICAL


class AccessDenied(QueryPanelError):
    """A query referenced a table outside the configured allow-list."""

    error_code = ErrorCode.ACCESS_DENIED

    def __init__(self, table: str, details: Optional[Any] = None):
        super().__init__(
            f'Query references table "{table}" which is not in the allowed tables list',
            details=details,
        )
        self.table = table


class QueryInvalid(QueryPanelError):
    """The database rejected the dry-run (EXPLAIN) of a query."""

    error_code = ErrorCode.QUERY_INVALID


class QueryExecutionFailed(QueryPanelError):
    """The database failed while executing a query."""

    error_code = ErrorCode.QUERY_EXECUTION_FAILED


class TransportError(QueryPanelError):
    """A remote collaborator (generation, chart or ingest service) failed.

    Attributes:
        status_code (Optional[int]): HTTP status code when the failure came from a response.
    """

    error_code = ErrorCode.TRANSPORT_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


class OperationCancelled(QueryPanelError):
    """The caller cancelled the operation while it was in flight."""

    error_code = ErrorCode.CANCELLED

    def __init__(self, message: str = "Operation cancelled by caller."):
        super().__init__(message)
