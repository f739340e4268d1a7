"""
Retry Manager for the service kit.

This module runs an operation under a retry policy: a fixed number of
additional attempts (or unlimited), a pause between attempts that may grow
by a backoff factor, and an optional cancellation event that aborts any
pending retry.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from .config import RetryConfig

T = TypeVar("T")

RETRY_FOREVER = -1


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]
    cancelled: bool = False


class RetryManager:
    """
    Executes operations with retries.

    ``config.times`` is the number of additional attempts after the first
    one; RETRY_FOREVER (-1) retries until the operation succeeds, raises a
    non-retryable error, or the cancel event is set.
    """

    def __init__(self, config: RetryConfig) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with times, sleep and backoff
        """
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate the pause before the next attempt.

        delay(n) = sleep * backoff^n, capped at max_sleep_seconds.

        Args:
            attempt: The number of the failed attempt (0-indexed)

        Returns:
            The delay in seconds before the next retry
        """
        delay = self._config.sleep_seconds * (self._config.backoff ** attempt)
        return max(0.0, min(delay, self._config.max_sleep_seconds))

    def _attempts_left(self, attempts: int) -> bool:
        if self._config.times == RETRY_FOREVER:
            return True
        return attempts < max(self._config.times, 0) + 1

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
        cancel: Optional[threading.Event] = None,
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation with retry logic.

        Args:
            operation: The operation to execute
            is_retryable: Optional function to determine if an exception is
                retryable. If not provided, all exceptions are retryable.
            cancel: Optional event; once set, no further attempt is started
            on_retry: Optional hook called with (attempts so far, error, delay)
                before each pause

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        last_error: Optional[Exception] = None
        attempts = 0

        while self._attempts_left(attempts):
            if cancel is not None and cancel.is_set():
                return RetryResult(
                    success=False,
                    result=None,
                    attempts=attempts,
                    last_error=last_error,
                    cancelled=True,
                )

            try:
                result = operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts + 1,
                    last_error=None,
                )
            except Exception as e:
                last_error = e
                attempts += 1

                should_retry = is_retryable(e) if is_retryable else True
                if not should_retry or not self._attempts_left(attempts):
                    break

                delay = self._calculate_delay(attempts - 1)
                if on_retry is not None:
                    on_retry(attempts, e, delay)

                if cancel is not None:
                    if cancel.wait(delay):
                        return RetryResult(
                            success=False,
                            result=None,
                            attempts=attempts,
                            last_error=last_error,
                            cancelled=True,
                        )
                elif delay > 0:
                    time.sleep(delay)

        return RetryResult(
            success=False,
            result=None,
            attempts=attempts,
            last_error=last_error,
        )
