"""
Exception classes for the service kit.

All exceptions inherit from ServiceKitError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Any, Optional


class ServiceKitError(Exception):
    """Base exception for all service kit errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(ServiceKitError):
    """Raised when a caller passes a value the component cannot accept."""

    pass


class DataTypeNotSupportedError(InvalidArgumentError):
    """Raised when a cache counter operation meets a non-integral value."""

    def __init__(self, key: str, value: Any) -> None:
        super().__init__(
            code="data_type_not_supported",
            message=f"data type is not supported: {type(value).__name__}",
            details={"key": key},
        )


class ValueLessThanZeroError(InvalidArgumentError):
    """Raised when decrementing an unsigned counter that is already zero."""

    def __init__(self, key: str) -> None:
        super().__init__(
            code="value_less_than_zero",
            message="object value is less than zero",
            details={"key": key},
        )


class NotFoundError(ServiceKitError):
    """Raised when a referenced object does not exist."""

    pass


class KeyNotExistsError(NotFoundError):
    """Raised when a cache counter operation targets a missing key."""

    def __init__(self, key: str) -> None:
        super().__init__(
            code="key_not_exists",
            message=f"the key is not exists: {key}",
            details={"key": key},
        )


class PreconditionFailedError(ServiceKitError):
    """Raised when an operation is valid but the current state forbids it."""

    pass


class TransientError(ServiceKitError):
    """Raised for failures that may succeed when retried."""

    pass


class TransportError(TransientError):
    """
    Raised when an HTTP request could not be completed.

    Carries the tracing record of the failed request so callers can see
    how many attempts were made.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
        trace: Any = None,
    ) -> None:
        super().__init__(code, message, details)
        self.trace = trace
