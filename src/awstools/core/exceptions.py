"""Custom exceptions for awstools."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any


class FatalKind(Enum):
    """Why a failed call must not be retried."""

    PERMISSION_DENIED = "permission_denied"
    CREDENTIALS = "credentials"
    INTERRUPTED = "interrupted"
    LAUNCH_FAILED = "launch_failed"
    UNCLASSIFIED = "unclassified"


class AWSToolsError(Exception):
    """Base exception for awstools."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            **self.details,
        }


class ConfigLoadError(AWSToolsError):
    """Raised when an existing configuration source is malformed."""

    def __init__(self, message: str, path: Path | str, line_number: int | None = None):
        details: dict[str, Any] = {"path": str(path)}
        if line_number is not None:
            details["line"] = line_number
        super().__init__(message, details)
        self.path = Path(path)
        self.line_number = line_number


class AuthResolutionError(AWSToolsError):
    """Raised when a caller requires credentials and none could be detected."""

    def __init__(self, message: str, suggestion: str | None = None):
        details = {}
        if suggestion:
            details["suggestion"] = suggestion
        super().__init__(message, details)


class ExecutionError(AWSToolsError):
    """Base class for failures of an external CLI call."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        error_code: str | None = None,
        retries: int = 0,
        hint: str | None = None,
    ):
        details: dict[str, Any] = {"retries": retries}
        if service:
            details["service"] = service
        if error_code:
            details["error_code"] = error_code
        if hint:
            details["hint"] = hint
        super().__init__(message, details)
        self.service = service
        self.error_code = error_code
        self.retries = retries
        self.hint = hint


class RetryableExecutionError(ExecutionError):
    """A transient failure. Consumed by the retry loop."""


class ExecutionTimeoutError(RetryableExecutionError):
    """The external process exceeded its timeout."""


class FatalExecutionError(ExecutionError):
    """A failure that is never retried."""

    def __init__(self, message: str, kind: FatalKind, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.kind = kind
        self.details["kind"] = kind.value


class RetriesExhaustedError(ExecutionError):
    """The retry budget ran out while the failure was still transient."""

    def __init__(self, last_error: RetryableExecutionError, retries: int):
        super().__init__(
            last_error.message,
            service=last_error.service,
            error_code=last_error.error_code,
            retries=retries,
            hint=last_error.hint,
        )
        self.last_error = last_error

    @property
    def timed_out(self) -> bool:
        """Whether the final attempt ended in a timeout."""
        return isinstance(self.last_error, ExecutionTimeoutError)
