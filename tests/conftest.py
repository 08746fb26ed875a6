"""Shared pytest configuration and fixtures.

This module provides global fixtures and configuration that are available
to all tests in the test suite.

Fixtures defined here are automatically available to all tests without explicit
import statements. Keep fixtures small, composable, and focused on setup/teardown.
Do NOT put business logic in fixtures.
"""

# pylint: disable=redefined-outer-name
# Pytest fixtures intentionally redefine fixture names - this is expected behavior

import threading
from collections.abc import Iterator
from typing import Any

import pytest

from bitmap_ingest.clients.interfaces.topology import ClusterTopology
from bitmap_ingest.clients.interfaces.transport import Transport, TransportResponse
from bitmap_ingest.config import get_settings
from bitmap_ingest.core.exceptions import NoAvailableHostsError
from bitmap_ingest.core.models import FieldRef

# =============================================================================
# Test doubles
# =============================================================================


class FakeTransport(Transport):
    """Records every POST and answers from a per-address script.

    `responses[address]` is a list consumed in order; each entry is either a
    TransportResponse or an exception instance to raise. Addresses without a
    script answer 200.
    """

    def __init__(self) -> None:
        self.responses: dict[str, list[Any]] = {}
        self.json_responses: dict[str, list[Any]] = {}
        self.sent: list[tuple[str, str, bytes, dict[str, str]]] = []
        self.gets: list[tuple[str, str, dict[str, Any] | None]] = []
        self.closed = False
        self._lock = threading.Lock()

    def send(self, address: str, path: str, payload: bytes, headers: dict[str, str]) -> TransportResponse:
        with self._lock:
            self.sent.append((address, path, payload, headers))
            script = self.responses.get(address)
            answer = script.pop(0) if script else TransportResponse(200)
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def get_json(self, address: str, path: str, params: dict[str, Any] | None = None) -> Any:
        with self._lock:
            self.gets.append((address, path, params))
            script = self.json_responses.get(address)
            answer = script.pop(0) if script else []
        if isinstance(answer, BaseException):
            raise answer
        return answer

    def close(self) -> None:
        self.closed = True


class FakeTopology(ClusterTopology):
    """Hands out addresses in order, skipping removed ones."""

    def __init__(self, addresses: list[str]) -> None:
        self.addresses = list(addresses)
        self.removed: list[str] = []
        self.lookups: list[tuple[str, int]] = []

    def address_for(self, index: str, shard: int) -> str:
        self.lookups.append((index, shard))
        live = [a for a in self.addresses if a not in self.removed]
        if not live:
            raise NoAvailableHostsError("There are no available hosts")
        return live[0]

    def remove_address(self, address: str) -> None:
        if address not in self.removed:
            self.removed.append(address)


# =============================================================================
# Common Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Iterator[None]:
    """Reset the cached settings around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def field() -> FieldRef:
    """Plain ID-addressed field."""
    return FieldRef("repo", "stargazer")


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def fake_topology() -> FakeTopology:
    return FakeTopology(["http://node-a:10101", "http://node-b:10101"])


@pytest.fixture
def sleep_calls() -> list[float]:
    """Delays requested by a retry loop; pass `sleep=sleep_calls.append`."""
    return []
