"""Exception hierarchy for allowlist synchronization.

All errors raised by the package inherit from AllowlistError so callers can
handle local storage and remote rules-list failures uniformly.

Exception Hierarchy:
    AllowlistError (base for all package exceptions)
    ├── InvalidInputError (malformed IP/CIDR, also a ValueError)
    ├── ConflictError (entry already exists in the local store)
    ├── NotFoundError (entry missing from the local store)
    ├── StorageError (SQLite transaction or I/O failure)
    └── RemoteApiError (rules-list API failures)
        ├── RemoteTransportError (network failure or non-2xx status)
        └── RemoteListNotFoundError (list id cannot be resolved)

Failed undo steps are not exceptions: they are recorded as
CompensationFailure entries on the primary error.

Usage:
    from allowlist_sync.exceptions import RemoteApiError

    try:
        coordinator.add_allowed_ip("10.0.0.0/8", "office")
    except RemoteApiError as e:
        print(e.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CompensationFailure:
    """A compensating action that could not be completed.

    Attributes:
        action: The undo step attempted (e.g. "delete_remote", "restore_remote").
        ip: The IP/CIDR the step targeted.
        error: The exception raised by the step.
    """

    action: str
    ip: str
    error: BaseException

    def describe(self) -> str:
        """Return a one-line description for logs and CLI output."""
        return f"{self.action} {self.ip}: {self.error}"


class AllowlistError(Exception):
    """Base exception for all allowlist errors.

    Attributes:
        message: Human-readable error message.
        details: Additional context about the error.
        error_code: Machine-readable error code.
        compensation_failures: Undo steps that failed after this error.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Additional context as key-value pairs.
            error_code: Machine-readable error code.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_code = error_code
        self.compensation_failures: list[CompensationFailure] = []

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses.

        Returns:
            Dictionary with error details suitable for JSON serialization.
        """
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.error_code:
            result["code"] = self.error_code
        if self.details:
            result["details"] = self.details
        if self.compensation_failures:
            result["compensation_failures"] = [
                f.describe() for f in self.compensation_failures
            ]
        return result


class InvalidInputError(AllowlistError, ValueError):
    """Malformed IP address or CIDR block.

    Raised before any I/O happens, so the caller can correct the input
    and retry.

    Example:
        >>> raise InvalidInputError("Invalid IP format", field="ip", value="10.0.0.1/33")
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize validation error with field context.

        Args:
            message: Description of the validation failure.
            field: Name of the field that failed validation.
            value: The invalid value.
            details: Additional validation context.
            error_code: Machine-readable error code.
        """
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            # Truncate long values to avoid log bloat
            str_value = str(value)
            details["value"] = (
                str_value[:100] + "..." if len(str_value) > 100 else str_value
            )
        super().__init__(
            message, details=details, error_code=error_code or "INVALID_INPUT"
        )


class ConflictError(AllowlistError):
    """An entry with the same IP already exists."""

    def __init__(
        self,
        message: str,
        *,
        ip: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        details = details or {}
        if ip:
            details["ip"] = ip
        super().__init__(message, details=details, error_code=error_code or "CONFLICT")


class NotFoundError(AllowlistError):
    """The targeted entry does not exist locally."""

    def __init__(
        self,
        message: str,
        *,
        ip: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        details = details or {}
        if ip:
            details["ip"] = ip
        super().__init__(message, details=details, error_code=error_code or "NOT_FOUND")


class StorageError(AllowlistError):
    """Local database operation errors.

    Example:
        >>> raise StorageError(
        ...     "database is locked",
        ...     operation="insert",
        ...     table="allowed_ips",
        ... )
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        table: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize storage error.

        Args:
            message: Description of the database error.
            operation: The database operation that failed.
            table: The table involved.
            details: Additional context.
            error_code: Machine-readable error code.
        """
        details = details or {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(
            message, details=details, error_code=error_code or "STORAGE_ERROR"
        )


class RemoteApiError(AllowlistError):
    """Rules-list API error.

    Attributes:
        status_code: HTTP status code (if available)
        errors: List of error details from the API response
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: list[dict[str, Any]] | None = None,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
    ) -> None:
        """Initialize RemoteApiError.

        Args:
            message: Error message
            status_code: HTTP status code
            errors: Error objects from the API envelope
            details: Additional context
            error_code: Machine-readable error code
        """
        details = details or {}
        if status_code:
            details["status_code"] = status_code
        super().__init__(
            message, details=details, error_code=error_code or "REMOTE_API_ERROR"
        )
        self.status_code = status_code
        self.errors = errors or []

    def __str__(self) -> str:
        """Return string representation."""
        parts = [self.message]
        if self.status_code:
            parts.append(f"(status: {self.status_code})")
        if self.errors:
            error_msgs = [str(e.get("message", e)) for e in self.errors]
            parts.append(f"Details: {'; '.join(error_msgs)}")
        return " ".join(parts)


class RemoteTransportError(RemoteApiError):
    """Network failure, non-2xx status or redirect exhaustion.

    Attributes:
        body: Raw response body, if a response was received.
    """

    def __init__(
        self,
        message: str,
        *,
        body: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", "REMOTE_TRANSPORT_ERROR")
        super().__init__(message, **kwargs)
        self.body = body


class RemoteListNotFoundError(RemoteApiError):
    """The configured rules list could not be resolved."""

    def __init__(
        self,
        message: str,
        *,
        list_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("error_code", "REMOTE_LIST_NOT_FOUND")
        super().__init__(message, **kwargs)
        self.list_name = list_name
        if list_name:
            self.details["list_name"] = list_name


__all__ = [
    "AllowlistError",
    "CompensationFailure",
    "ConflictError",
    "InvalidInputError",
    "NotFoundError",
    "RemoteApiError",
    "RemoteListNotFoundError",
    "RemoteTransportError",
    "StorageError",
]
