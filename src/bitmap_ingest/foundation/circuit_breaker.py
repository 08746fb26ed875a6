"""Circuit breaker utilities for cluster metadata lookups.

This module wraps **pybreaker** so that repeated failures of a cluster
endpoint fail fast instead of stalling every import worker on connect
timeouts.

## Usage

```python
@attrs.define(frozen=False, slots=True)
class MyTopology(CircuitBreakerMixin):
    _breaker: pybreaker.CircuitBreaker = attrs.field(init=False)

    def _circuit_breaker_config(self) -> tuple[str, int, int]:
        return ("fragment-nodes", 5, 60)

    def __attrs_post_init__(self) -> None:
        self._init_circuit_breaker()

    @with_circuit_breaker("fragment-nodes")
    def fetch(self) -> list[str]:
        ...
```

## Circuit Breaker States

- **CLOSED**: Normal operation, requests pass through
- **OPEN**: Endpoint is failing, requests fail immediately
- **HALF_OPEN**: Testing if the endpoint has recovered

The decorator:
1. Checks if the circuit is open → fail fast with UpstreamError
2. Wraps the call to track success/failure
3. Converts CircuitBreakerError to UpstreamError
"""

import functools
import logging
from collections.abc import Callable
from typing import NoReturn

import pybreaker

from .exceptions import UpstreamError

logger = logging.getLogger("bitmap_ingest.circuit_breaker")


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Logging listener for circuit breaker state changes."""

    def state_change(
        self,
        cb: pybreaker.CircuitBreaker,
        old_state: pybreaker.CircuitBreakerState | None,
        new_state: pybreaker.CircuitBreakerState,
    ) -> None:
        logger.warning(
            "Circuit breaker state changed",
            extra={
                "circuit_breaker": cb.name,
                "old_state": str(old_state),
                "new_state": str(new_state),
                "failure_count": cb.fail_counter,
            },
        )

    def failure(
        self,
        cb: pybreaker.CircuitBreaker,
        exc: BaseException,
    ) -> None:
        logger.error(
            "Circuit breaker failure",
            extra={
                "circuit_breaker": cb.name,
                "state": str(cb.current_state),
                "failure_count": cb.fail_counter,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            },
        )


def create_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: int = 60,
    exclude: list[type[BaseException]] | None = None,
) -> pybreaker.CircuitBreaker:
    """Create a circuit breaker for a cluster endpoint.

    Args:
        name: Unique name for the circuit breaker (e.g., "fragment-nodes").
        failure_threshold: Number of consecutive failures before opening
            circuit. Default: 5.
        recovery_timeout: Seconds to wait before attempting recovery (moving
            to half-open state). Default: 60.
        exclude: Exception types that do not count as failures.

    Returns:
        Configured CircuitBreaker instance with logging listener.

    Note:
        State transitions:
        - CLOSED → OPEN: After `failure_threshold` consecutive failures
        - OPEN → HALF_OPEN: After `recovery_timeout` seconds
        - HALF_OPEN → CLOSED: After first successful call
        - HALF_OPEN → OPEN: If call fails during recovery
    """
    return pybreaker.CircuitBreaker(
        name=name,
        fail_max=failure_threshold,
        reset_timeout=recovery_timeout,
        exclude=exclude or [],
        listeners=[CircuitBreakerListener()],
    )


def handle_circuit_breaker_error(service_name: str) -> NoReturn:
    """Raise UpstreamError for an open circuit.

    Args:
        service_name: Name of the protected endpoint (for error message).

    Raises:
        UpstreamError: Always.
    """
    msg = (
        f"{service_name} is currently unavailable. "
        "The circuit breaker is open due to repeated failures. "
        "It will be retried automatically after the recovery timeout."
    )
    raise UpstreamError(msg)


def _get_breaker_or_raise(instance: object) -> pybreaker.CircuitBreaker:
    breaker = getattr(instance, "_breaker", None)
    if breaker is None:
        msg = (
            f"{instance.__class__.__name__} has no circuit breaker. "
            "Ensure the class inherits from CircuitBreakerMixin and "
            "calls _init_circuit_breaker() in __attrs_post_init__."
        )
        raise RuntimeError(msg)
    return breaker


def with_circuit_breaker(service_name: str) -> Callable:
    """Decorator to wrap method calls with circuit breaker protection.

    Args:
        service_name: Name used in error messages.

    Returns:
        Decorator function that wraps methods with circuit breaker logic.

    Note:
        The instance must expose a `_breaker` attribute (typically provided
        by CircuitBreakerMixin).
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            breaker = _get_breaker_or_raise(self)

            if breaker.current_state == pybreaker.STATE_OPEN:
                handle_circuit_breaker_error(service_name)

            def _impl():
                return func(self, *args, **kwargs)

            try:
                return breaker.call(_impl)
            except pybreaker.CircuitBreakerError:
                handle_circuit_breaker_error(service_name)

        return wrapper

    return decorator
