"""Unit tests for foundation.http module.

This file tests the create_retry_session function which creates the pooled
HTTP session used to talk to cluster nodes.

# Test Coverage

The tests cover:
  - Session Creation: Default and custom session configuration
  - Retry Configuration: GET-only transparent retries, custom parameters
  - Adapter Configuration: HTTP and HTTPS adapter mounting, pool sizing

# Test Structure

Tests use pytest class-based organization with descriptive test names.
Session creation is tested in isolation without network calls.

# Running Tests

Run with: pytest tests/unit/foundation/test_http.py
"""

import requests
from urllib3.util.retry import Retry

from bitmap_ingest.foundation.http import (
    DEFAULT_ALLOWED_METHODS,
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_MAX_RETRIES,
    DEFAULT_STATUS_FORCELIST,
    USER_AGENT,
    create_retry_session,
)


class TestCreateRetrySession:
    """Test suite for create_retry_session function."""

    def test_creates_session_with_default_config(self) -> None:
        """Test that session is created with default retry configuration.

        **Why this test is important:**
          - Session creation is the primary function of this module
          - Ensures default configuration works out of the box

        **What it tests:**
          - Returns a requests.Session instance
          - HTTP and HTTPS adapters carry a urllib3 Retry
        """
        session = create_retry_session()

        assert isinstance(session, requests.Session)
        for prefix in ("http://", "https://"):
            adapter = session.adapters[prefix]
            assert isinstance(adapter.max_retries, Retry)  # type: ignore[attr-defined]

    def test_default_retry_configuration(self) -> None:
        """Test that default retry configuration matches constants."""
        retry = create_retry_session().adapters["http://"].max_retries  # type: ignore[attr-defined]

        assert retry.total == DEFAULT_MAX_RETRIES
        assert retry.backoff_factor == DEFAULT_BACKOFF_FACTOR
        assert list(retry.status_forcelist) == DEFAULT_STATUS_FORCELIST
        assert set(retry.allowed_methods) == set(DEFAULT_ALLOWED_METHODS)

    def test_post_is_never_retried_transparently(self) -> None:
        """Test that import POSTs are excluded from transport-level retries.

        **Why this test is important:**
          - The dispatcher must remove a failed node before retrying a batch
          - A transparent retry would resend the batch to the same dead node

        **What it tests:**
          - POST is not in the allowed methods of the default retry
          - Retry.is_retry returns False for POST on a retryable status
        """
        retry = create_retry_session().adapters["http://"].max_retries  # type: ignore[attr-defined]

        assert "POST" not in retry.allowed_methods
        assert retry.is_retry("POST", 503) is False
        assert retry.is_retry("GET", 503) is True

    def test_custom_configuration(self) -> None:
        session = create_retry_session(
            max_retries=7,
            backoff_factor=1.5,
            pool_size=4,
            status_forcelist=[500],
            allowed_methods=["GET", "HEAD"],
        )
        adapter = session.adapters["https://"]
        retry = adapter.max_retries  # type: ignore[attr-defined]

        assert retry.total == 7
        assert retry.backoff_factor == 1.5
        assert list(retry.status_forcelist) == [500]
        assert set(retry.allowed_methods) == {"GET", "HEAD"}
        assert adapter._pool_maxsize == 4  # type: ignore[attr-defined]

    def test_sets_user_agent(self) -> None:
        assert create_retry_session().headers["User-Agent"] == USER_AGENT

    def test_does_not_raise_on_status(self) -> None:
        """Exhausted GET retries return the last response instead of raising."""
        retry = create_retry_session().adapters["http://"].max_retries  # type: ignore[attr-defined]

        assert retry.raise_on_status is False
