"""Exception hierarchy for upsert-race.

Two-tier hierarchy:

1. UpsertRaceBaseException - Base for all errors, not caught by default handlers
2. UpsertRaceError - Standard errors that can be caught and handled

Runtime failures of individual writers are never raised; they are recorded
on the writer (see ``Upserter.success``). Only setup problems and a failed
post-condition check surface as exceptions.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

# SQLSTATE values PostgreSQL uses when it aborts a transaction to keep
# concurrent transactions serializable.
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"


class ErrorCode(Enum):
    """Semantic error codes for categorizing exceptions."""

    UNKNOWN = "UNKNOWN"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    CONFIGURATION_INVALID = "CONFIGURATION_INVALID"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"


class UpsertRaceBaseException(Exception):  # noqa: N818 - intentional base exception name
    """Base exception for all upsert-race errors.

    Attributes:
        code: Numeric error code for programmatic handling
        error_code: Semantic ErrorCode for categorization
        cause: Optional original exception that caused this error
    """

    code: int = 0
    _default_error_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        cause: Exception | None = None,
        error_code: ErrorCode | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.cause = cause
        self._error_code = error_code

    @property
    def error_code(self) -> ErrorCode:
        """Get the semantic error code for this exception."""
        if self._error_code is not None:
            return self._error_code
        return self._default_error_code

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.code:
            parts.append(f"(code={self.code})")
        if self.cause:
            parts.append(f"caused by: {self.cause}")
        return " ".join(parts)


class UpsertRaceError(UpsertRaceBaseException):
    """Standard upsert-race error.

    All normal application errors inherit from this.
    """

    code: int = 100
    _default_error_code = ErrorCode.SYSTEM_ERROR


class SessionError(UpsertRaceError):
    """A database session could not be opened."""

    code: int = 101
    _default_error_code = ErrorCode.CONNECTION_FAILED


class InvalidConfigurationError(UpsertRaceError):
    """Invalid configuration.

    Raised when an upsert statement cannot be prepared or its parameters
    cannot be bound, and when a race is configured with values the harness
    cannot run. The object being built is unusable.
    """

    code: int = 104
    _default_error_code = ErrorCode.CONFIGURATION_INVALID


class VerificationError(UpsertRaceError):
    """The stored row does not match the expected post-condition.

    Attributes:
        details: Observed and expected values for the failed check
    """

    code: int = 600
    _default_error_code = ErrorCode.VERIFICATION_FAILED

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        cause: Exception | None = None,
        error_code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, code=code, cause=cause, error_code=error_code)
        self.details = details or {}


def is_serialization_failure(error: BaseException) -> bool:
    """Check if a driver error is a serialization failure or deadlock.

    These are the aborts PostgreSQL is allowed to raise at REPEATABLE READ
    and SERIALIZABLE when writers race on the same row.

    Args:
        error: The exception to check

    Returns:
        True if the error carries SQLSTATE 40001 or 40P01
    """
    sqlstate = getattr(error, "sqlstate", None)
    if sqlstate in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
        return True

    cause = getattr(error, "__cause__", None)
    if cause is not None and cause is not error:
        return is_serialization_failure(cause)

    return False


def truncate_error(message: str, max_chars: int = 500) -> str:
    """Truncate an error message for logs and reports."""
    if len(message) <= max_chars:
        return message
    marker = " [TRUNCATED]"
    return message[: max(max_chars - len(marker), 0)] + marker
