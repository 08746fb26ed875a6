"""Mixins for client classes.

This module provides reusable mixins that can be combined with client classes
to add common functionality like circuit breaker support and logging.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import attrs
import pybreaker

from bitmap_ingest.foundation.circuit_breaker import create_circuit_breaker


@attrs.define(frozen=False, slots=True)
class CircuitBreakerMixin(ABC):
    """Mixin for clients with circuit breaker support.

    Subclasses must implement `_circuit_breaker_config()` to specify their
    circuit breaker parameters.

    Example:
        ```python
        @attrs.define(frozen=False, slots=True)
        class MyTopology(CircuitBreakerMixin):
            coordinator: str

            def _circuit_breaker_config(self) -> tuple[str, int, int]:
                return ("fragment-nodes", 5, 60)

            def __attrs_post_init__(self) -> None:
                self._init_circuit_breaker()
        ```
    """

    _breaker: pybreaker.CircuitBreaker = attrs.field(init=False)

    @abstractmethod
    def _circuit_breaker_config(self) -> tuple[str, int, int]:
        """Return circuit breaker configuration.

        Returns:
            Tuple of (name, failure_threshold, recovery_timeout).
        """

    def _init_circuit_breaker(self, exclude: list[type[BaseException]] | None = None) -> None:
        """Initialize circuit breaker with configuration from subclass.

        Call this in `__attrs_post_init__` once the client is fully initialized.

        Args:
            exclude: Exception types that must not count as failures.
        """
        name, failure_threshold, recovery_timeout = self._circuit_breaker_config()
        object.__setattr__(
            self,
            "_breaker",
            create_circuit_breaker(
                name=name,
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                exclude=exclude,
            ),
        )


class LoggerMixin:
    """Mixin that provides automatic logger creation for client classes.

    The logger is named after the class's module and is available as
    `self._logger` or `cls._logger`.
    """

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._logger = logging.getLogger(cls.__module__)  # type: ignore[attr-defined]
