"""
Error types for the disk-space monitor.

This module defines the MonitorError base class and subclasses for the
failures the collector and the query endpoints can report. Domain code raises
MonitorError (or a subclass); the HTTP layer maps error codes to status codes
in a single exception handler.
"""

from __future__ import annotations

from typing import Any


class MonitorError(Exception):
    """
    Base exception class for disk monitor errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "format_error", "collection_error", "failed_precondition", "internal").
        message: Human-readable error message.
        details: Optional structured details (e.g., parameter values, context).

    Example:
        >>> raise MonitorError(
        ...     error_code="invalid_argument",
        ...     message="capacity must be at least 1",
        ...     details={"capacity": 0},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a MonitorError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(MonitorError):
    """
    Error raised when an operation receives an invalid argument.

    Used for parameter validation failures such as a missing or
    non-integer ``from``/``to`` query parameter.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class FormatError(MonitorError):
    """
    Error raised when a relative-time expression cannot be parsed.

    Examples of rejected input: ``""``, ``"30"``, ``"30x"``, ``"h"``.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FormatError."""
        super().__init__(error_code="format_error", message=message, details=details)


class CollectionError(MonitorError):
    """
    Error raised when partition usage cannot be collected.

    Raised when the partition enumeration itself fails. Failures probing a
    single partition are logged and do not raise.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a CollectionError."""
        super().__init__(
            error_code="collection_error", message=message, details=details
        )


class FailedPreconditionError(MonitorError):
    """
    Error raised when a precondition for the operation is not met.

    Used when the sampler is started twice.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class InternalError(MonitorError):
    """
    Error raised for unexpected internal errors.

    Unexpected exceptions reaching the HTTP layer are wrapped in this type
    and logged with full stack traces.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InternalError."""
        super().__init__(error_code="internal", message=message, details=details)
