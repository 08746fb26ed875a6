"""Retry utilities with exponential backoff using tenacity.

This module provides reusable building blocks for bounded retry loops with
structured logging.

## Components

### ErrorClassifier (Protocol)
Protocol for classifying errors as retriable vs non-retriable.

### ExceptionTypeClassifier
Classifier that treats a fixed set of exception types as transient and
extracts common error attributes (`status_code`, `address`) for logging.

### create_retry_logger
Factory for tenacity `before_sleep` callbacks. Works for both exception
outcomes and result outcomes (loops driven by `retry_if_result`).

### default_backoff
Exponential wait strategy used when callers do not inject their own.

## Usage

```python
from tenacity import Retrying, retry_if_result, stop_after_attempt

from bitmap_ingest.foundation.retry import create_retry_logger, default_backoff

retrying = Retrying(
    stop=stop_after_attempt(3),
    wait=default_backoff(),
    retry=retry_if_result(lambda result: result.retryable),
    before_sleep=create_retry_logger(logger, message="Import failed, retrying"),
)
```
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from tenacity import wait_exponential
from tenacity.wait import wait_base

DEFAULT_WAIT_MIN = 0.5
DEFAULT_WAIT_MAX = 10.0
DEFAULT_MULTIPLIER = 1.0


@runtime_checkable
class ErrorClassifier(Protocol):
    """Protocol for error classification in retry logic.

    Example:
        ```python
        class TimeoutOnlyClassifier:
            def is_retriable(self, exc: BaseException) -> bool:
                return isinstance(exc, requests.Timeout)

            def get_error_details(self, exc: BaseException) -> dict[str, Any]:
                return {}
        ```
    """

    def is_retriable(self, exc: BaseException) -> bool:
        """Determine if an exception should trigger a retry.

        Args:
            exc: The exception to classify.

        Returns:
            True if the error is transient and should be retried,
            False if it's a permanent error that should fail immediately.
        """
        ...

    def get_error_details(self, exc: BaseException) -> dict[str, Any]:
        """Extract structured error details for logging.

        Args:
            exc: The exception to extract details from.

        Returns:
            Dictionary with error details. Empty dict if none are available.
        """
        ...


class ExceptionTypeClassifier:
    """Classify exceptions as retriable by type.

    Attributes:
        retriable_types: Exception types considered transient.

    Example:
        ```python
        classifier = ExceptionTypeClassifier((TransportError,))
        classifier.is_retriable(TransportError("connection refused"))  # True
        classifier.is_retriable(ServerResponseError(400, b"bad"))  # False
        ```
    """

    def __init__(self, retriable_types: tuple[type[BaseException], ...]) -> None:
        self.retriable_types = retriable_types

    def is_retriable(self, exc: BaseException) -> bool:
        return isinstance(exc, self.retriable_types)

    def get_error_details(self, exc: BaseException) -> dict[str, Any]:
        details: dict[str, Any] = {"error_type": type(exc).__name__, "error": str(exc)}
        for attr in ("status_code", "address"):
            value = getattr(exc, attr, None)
            if value is not None:
                details[attr] = value
        return details


def default_backoff(
    wait_min: float = DEFAULT_WAIT_MIN,
    wait_max: float = DEFAULT_WAIT_MAX,
    multiplier: float = DEFAULT_MULTIPLIER,
) -> wait_base:
    """Return the default exponential backoff policy.

    tenacity's wait_exponential formula: multiplier * 2 ** (attempt - 1),
    clamped to [wait_min, wait_max].

    Args:
        wait_min: Minimum wait between attempts in seconds.
        wait_max: Maximum wait between attempts in seconds.
        multiplier: Exponential backoff multiplier.

    Returns:
        tenacity wait strategy.
    """
    return wait_exponential(multiplier=multiplier, min=wait_min, max=wait_max)


def create_retry_logger(
    logger: logging.Logger,
    get_error_details: Callable[[BaseException], dict[str, Any]] | None = None,
    message: str = "Operation failed, retrying",
    get_result_details: Callable[[Any], dict[str, Any]] | None = None,
) -> Callable[[Any], None]:
    """Create a retry logging callback for tenacity.

    This factory creates a callback function suitable for tenacity's
    `before_sleep` parameter. It logs retry attempts with structured
    context including attempt number, wait time, and error details.

    Args:
        logger: Logger instance to use for logging.
        get_error_details: Optional function extracting details from the
            exception of a failed attempt.
        message: Log message.
        get_result_details: Optional function extracting details from the
            result of an attempt that was retried because of its value.

    Returns:
        Callback function for tenacity's before_sleep parameter.

    Example:
        ```python
        log_retry = create_retry_logger(
            logger,
            message="Import failed, retrying",
            get_result_details=lambda r: {"address": r.address},
        )

        Retrying(before_sleep=log_retry, ...)
        ```
    """

    def log_retry(retry_state: Any) -> None:
        if retry_state.outcome is None:
            return

        wait_time = retry_state.next_action.sleep if retry_state.next_action else 0
        extra: dict[str, Any] = {
            "attempt": retry_state.attempt_number,
            "wait_seconds": round(wait_time, 2),
        }

        if retry_state.outcome.failed:
            exc = retry_state.outcome.exception()
            extra["error_type"] = type(exc).__name__
            if get_error_details is not None:
                extra.update(get_error_details(exc))
        elif get_result_details is not None:
            extra.update(get_result_details(retry_state.outcome.result()))

        logger.warning(message, extra=extra)

    return log_retry
