"""
Enumeration types for the service kit.

These enums provide type-safe constants for log levels, log flags,
rotation modes, and HTTP methods throughout the system.
"""

from enum import Enum, IntEnum, IntFlag

from .exceptions import InvalidArgumentError


class LogLevel(IntEnum):
    """Logging severity levels, ordered from least to most severe."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    FATAL = 4

    @classmethod
    def from_string(cls, name: str) -> "LogLevel":
        """
        Look up a level by its case-insensitive name.

        Raises:
            InvalidArgumentError: If the name is not a known level
        """
        try:
            return cls[name.strip().upper()]
        except (KeyError, AttributeError):
            raise InvalidArgumentError(
                code="invalid_level",
                message=f"{name} is invalid level",
                details={"level": name},
            ) from None


class LogFlag(IntFlag):
    """Bits controlling the prefix of each log line."""

    DATE = 1
    TIME = 2
    MICROSECONDS = 4
    LONG_FILE = 8
    SHORT_FILE = 16
    UTC = 32
    STD = DATE | TIME


class LogFormat(Enum):
    """Output format of log lines."""

    TEXT = "text"
    JSON = "json"


class LoggerState(Enum):
    """Lifecycle of a logger."""

    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class RotateType(Enum):
    """Log rotation trigger."""

    DAILY = "date"
    SIZE = "size"


class HTTPMethod(Enum):
    """HTTP methods accepted by the client."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"

    @property
    def has_body(self) -> bool:
        """Whether form params go to the request body for this method."""
        return self in (HTTPMethod.POST, HTTPMethod.PUT, HTTPMethod.PATCH)
