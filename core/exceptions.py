"""
Custom exceptions for the catalog connector with structured error context.

Every failure that can abort a pull is one of the exceptions below. Each
carries context for logging, plus the error code and public message used in
the error envelope written at the process boundary.

Exception Hierarchy:
    ConnectorException (base)
    ├── ValidationError
    ├── ApiError
    ├── UnexpectedResponseError
    │   └── BulkConflictError (blocked / throttled)
    └── InfrastructureError
        └── StagingWriteError
            └── StagingConflictError
"""

from enum import Enum
from typing import Optional, Dict, Any, List, Sequence
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

# Longest message that may be written back through the process pipe
PIPE_SAFE_MESSAGE_LENGTH = 800

BLOCKED_MARKER = "already in progress"
THROTTLED_MARKER = "throttled"


class ConnectorException(Exception):
    """
    Base exception for all connector errors.

    Attributes:
        message: Human-readable error message (may contain internal detail)
        context: Additional context information (shop, table, status, etc.)
        original_exception: The original exception that was caught (if any)
    """

    error_code = "connector_error"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def get_error_message(self) -> str:
        """Message that is safe to show to the caller."""
        return self.message

    def get_pipe_safe_error_message(self) -> str:
        return self.get_error_message()[:PIPE_SAFE_MESSAGE_LENGTH]

    def to_envelope(self) -> Dict[str, str]:
        return {
            "error_code": self.error_code,
            "error_message": self.get_pipe_safe_error_message(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Input Errors
# ============================================================================

class ValidationError(ConnectorException):
    """
    Raised for bad run input (options, filters, data types). Never retried.
    """

    error_code = "preprocess_validation_error"

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(f"Validation Error: {message}", context, original_exception)


# ============================================================================
# Remote Errors
# ============================================================================

class ApiError(ConnectorException):
    """
    Raised when the remote API rejects a call.

    Context should include:
        - url: The endpoint that failed (if applicable)
        - status_code: HTTP status code (if applicable)

    The raw decoded response (or error list) is kept on ``data``.
    """

    error_code = "api_response_error"

    def __init__(
        self,
        message: str,
        data: Any = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.data = data
        super().__init__(message, context, original_exception)


class UnexpectedResponseError(ConnectorException):
    """Raised when a response does not have the shape the connector expects."""

    error_code = "unexpected_integration_response"

    def __init__(
        self,
        api_name: str,
        details: str = "",
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.api_name = api_name
        self.details = details
        super().__init__(
            f"We received an unexpected response from {api_name}. {details}".strip(),
            context,
            original_exception
        )


class BulkErrorKind(str, Enum):
    BLOCKED = "blocked"
    THROTTLED = "throttled"
    UNHANDLED = "unhandled"


def _single_error_contains(errors: Sequence[Dict[str, Any]], marker: str) -> bool:
    if not errors or len(errors) != 1:
        return False
    message = errors[0].get("message") if isinstance(errors[0], dict) else None
    return marker in str(message or "").lower()


def query_is_blocked(errors: Sequence[Dict[str, Any]]) -> bool:
    """True when the only error says another bulk query is already running."""
    return _single_error_contains(errors, BLOCKED_MARKER)


def query_is_throttled(errors: Sequence[Dict[str, Any]]) -> bool:
    """True when the only error says the request was throttled."""
    return _single_error_contains(errors, THROTTLED_MARKER)


def classify_bulk_errors(errors: Sequence[Dict[str, Any]]) -> BulkErrorKind:
    if query_is_blocked(errors):
        return BulkErrorKind.BLOCKED
    if query_is_throttled(errors):
        return BulkErrorKind.THROTTLED
    return BulkErrorKind.UNHANDLED


class BulkConflictError(UnexpectedResponseError):
    """
    Raised when a bulk operation request comes back with errors instead of
    an operation. Blocked and throttled conflicts are retried by the puller;
    everything else propagates.
    """

    def __init__(
        self,
        errors: List[Dict[str, Any]],
        api_name: str = "Shopify",
        context: Optional[Dict[str, Any]] = None
    ):
        self.errors = list(errors or [])
        self.kind = classify_bulk_errors(self.errors)
        context = dict(context or {})
        context["bulk_error_kind"] = self.kind.value
        context["error_count"] = len(self.errors)
        super().__init__(api_name, f"Bulk query errors: {self.first_message}", context)

    @property
    def first_message(self) -> str:
        if not self.errors:
            return ""
        first = self.errors[0]
        return str(first.get("message", "")) if isinstance(first, dict) else str(first)

    @property
    def is_blocked(self) -> bool:
        return self.kind is BulkErrorKind.BLOCKED

    @property
    def is_throttled(self) -> bool:
        return self.kind is BulkErrorKind.THROTTLED

    @property
    def is_retryable(self) -> bool:
        return self.kind is not BulkErrorKind.UNHANDLED


# ============================================================================
# Internal Errors
# ============================================================================

class InfrastructureError(ConnectorException):
    """
    Catch-all for local failures. The public message is generic; the detail
    passed in stays in ``message`` and ``context`` for the logs.
    """

    error_code = "infrastructure_error"
    PUBLIC_MESSAGE = "There was an internal failure. Please contact a developer."

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message or self.PUBLIC_MESSAGE, context, original_exception)

    def get_error_message(self) -> str:
        return self.PUBLIC_MESSAGE


class StagingWriteError(InfrastructureError):
    """
    Raised when rows cannot be written to a staging table.

    Context should include:
        - table: Staging table name
        - row_count: Number of rows in the failed batch
    """
    pass


class StagingConflictError(StagingWriteError):
    """Raised when a staging table's key rejects an inserted row."""
    pass


def build_error_envelope(exc: BaseException) -> Dict[str, str]:
    """
    Convert a failure into the ``{error_code, error_message}`` envelope.

    Connector exceptions keep their own code; anything else is logged with
    its traceback and reported as a generic infrastructure error.
    """
    if isinstance(exc, ConnectorException):
        logger.error(f"Pull aborted: {exc}")
        return exc.to_envelope()

    logger.error(f"Unhandled failure: {type(exc).__name__}: {exc}", exc_info=exc)
    return InfrastructureError().to_envelope()
