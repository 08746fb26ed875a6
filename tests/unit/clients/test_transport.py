"""Unit tests for clients.transport module.

# Test Coverage

The tests cover:
  - Initialization: default session, injected session, from_config
  - send: URL, body, headers and timeouts of the POST; non-2xx responses
    returned as values; request failures raised as TransportError
  - get_json: parsed JSON, TransportError, ServerResponseError on non-2xx
    or invalid JSON
  - close

# Test Structure

The underlying requests.Session is mocked to isolate transport logic.

# Running Tests

Run with: pytest tests/unit/clients/test_transport.py
"""

from unittest.mock import MagicMock

import pytest
import requests

from bitmap_ingest.clients.transport import RequestsTransport
from bitmap_ingest.config import ClusterConfig
from bitmap_ingest.core.exceptions import ServerResponseError, TransportError

ADDRESS = "http://node-a:10101"


def _response(status_code: int = 200, content: bytes = b"", json_data=None) -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.content = content
    if isinstance(json_data, Exception):
        resp.json.side_effect = json_data
    else:
        resp.json.return_value = json_data
    return resp


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def transport(session: MagicMock) -> RequestsTransport:
    return RequestsTransport(connect_timeout=5, socket_timeout=60, session=session)


# =============================================================================
# Initialization Tests
# =============================================================================


class TestRequestsTransportInit:
    """Test suite for RequestsTransport initialization."""

    def test_creates_pooled_session_by_default(self) -> None:
        transport = RequestsTransport()

        assert isinstance(transport.session, requests.Session)
        assert transport.timeout == (30.0, 300.0)
        transport.close()

    def test_uses_injected_session(self, transport: RequestsTransport, session: MagicMock) -> None:
        assert transport.session is session

    def test_from_config(self) -> None:
        config = ClusterConfig(connect_timeout=2, socket_timeout=20, pool_size=4)

        transport = RequestsTransport.from_config(config)

        assert transport.timeout == (2.0, 20.0)
        assert transport.pool_size == 4
        adapter = transport.session.get_adapter("http://node-a:10101")
        assert "GET" in adapter.max_retries.allowed_methods
        assert "POST" not in adapter.max_retries.allowed_methods
        transport.close()


# =============================================================================
# send Tests
# =============================================================================


class TestSend:
    """Test suite for RequestsTransport.send."""

    def test_posts_payload(self, transport: RequestsTransport, session: MagicMock) -> None:
        """Test that the batch is posted exactly as encoded.

        **Why this test is important:**
          - The transport must not alter path, body or headers of a batch

        **What it tests:**
          - URL is address + path
          - Body, headers and (connect, read) timeouts are passed through
        """
        session.post.return_value = _response(200)
        headers = {"Content-Type": "application/x-binary"}

        response = transport.send(ADDRESS, "/index/i/field/f/import-roaring/0", b"\x01\x02", headers)

        session.post.assert_called_once_with(
            "http://node-a:10101/index/i/field/f/import-roaring/0",
            data=b"\x01\x02",
            headers=headers,
            timeout=(5, 60),
        )
        assert response.ok is True
        assert response.status_code == 200

    def test_returns_error_status(self, transport: RequestsTransport, session: MagicMock) -> None:
        session.post.return_value = _response(400, b"bad shard")

        response = transport.send(ADDRESS, "/p", b"", {})

        assert response.ok is False
        assert response.status_code == 400
        assert response.body == b"bad shard"

    @pytest.mark.parametrize(
        "error",
        [requests.ConnectionError("refused"), requests.Timeout("read timed out"), requests.RequestException("io")],
    )
    def test_request_failure_raises_transport_error(
        self, transport: RequestsTransport, session: MagicMock, error: Exception
    ) -> None:
        session.post.side_effect = error

        with pytest.raises(TransportError) as exc_info:
            transport.send(ADDRESS, "/p", b"", {})

        assert exc_info.value.address == ADDRESS
        assert exc_info.value.__cause__ is error


# =============================================================================
# get_json Tests
# =============================================================================


class TestGetJson:
    """Test suite for RequestsTransport.get_json."""

    def test_returns_parsed_json(self, transport: RequestsTransport, session: MagicMock) -> None:
        session.get.return_value = _response(200, json_data=[{"host": "a"}])

        data = transport.get_json(ADDRESS, "/internal/fragment/nodes", params={"shard": 1, "index": "i"})

        assert data == [{"host": "a"}]
        session.get.assert_called_once_with(
            "http://node-a:10101/internal/fragment/nodes",
            params={"shard": 1, "index": "i"},
            timeout=(5, 60),
        )

    def test_error_status_raises(self, transport: RequestsTransport, session: MagicMock) -> None:
        session.get.return_value = _response(503, b"unavailable")

        with pytest.raises(ServerResponseError) as exc_info:
            transport.get_json(ADDRESS, "/x")

        assert exc_info.value.status_code == 503

    def test_invalid_json_raises(self, transport: RequestsTransport, session: MagicMock) -> None:
        session.get.return_value = _response(200, b"<html>", json_data=ValueError("no json"))

        with pytest.raises(ServerResponseError):
            transport.get_json(ADDRESS, "/x")

    def test_connection_error_raises_transport_error(self, transport: RequestsTransport, session: MagicMock) -> None:
        session.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(TransportError):
            transport.get_json(ADDRESS, "/x")


class TestClose:
    def test_closes_session(self, transport: RequestsTransport, session: MagicMock) -> None:
        transport.close()

        session.close.assert_called_once()
