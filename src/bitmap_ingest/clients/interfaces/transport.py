"""HTTP transport interface.

This module defines the `Transport` ABC used by the dispatcher and the
fragment-node topology. Concrete implementations live in the parent
`clients` package (e.g., `RequestsTransport`).
"""

from abc import ABC, abstractmethod
from typing import Any

import attrs


@attrs.define(frozen=True, slots=True)
class TransportResponse:
    """Status and body of an HTTP response.

    Attributes:
        status_code: HTTP status code.
        body: Raw response body.
    """

    status_code: int
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Transport(ABC):
    """Abstract base class for HTTP transports.

    A transport knows nothing about imports: it sends bytes to an address and
    reports what came back. Any failure to get a response at all (connection
    refused, timeout, I/O error) is raised as `TransportError`; a response with
    any status code is returned, not raised.

    Example:
        ```python
        class RecordingTransport(Transport):
            def __init__(self) -> None:
                self.sent = []

            def send(self, address, path, payload, headers) -> TransportResponse:
                self.sent.append((address, path, payload))
                return TransportResponse(200)

            def get_json(self, address, path, params=None):
                return []
        ```
    """

    @abstractmethod
    def send(self, address: str, path: str, payload: bytes, headers: dict[str, str]) -> TransportResponse:
        """POST a payload to a node.

        Args:
            address: Node address (`scheme://host:port`).
            path: Request path, including any query string.
            payload: Request body.
            headers: Request headers.

        Returns:
            The node's response, whatever its status code.

        Raises:
            TransportError: If no response was received.
        """

    @abstractmethod
    def get_json(self, address: str, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET a path and decode the JSON response.

        Args:
            address: Node address (`scheme://host:port`).
            path: Request path.
            params: Query string parameters.

        Returns:
            The decoded JSON document.

        Raises:
            TransportError: If no response was received.
            ServerResponseError: If the status is not 2xx or the body is not
                valid JSON.
        """

    def close(self) -> None:  # noqa: B027
        """Release pooled connections.

        Note:
            This is not an abstract method because some transports may not
            need cleanup. Subclasses should override if they maintain resources.
        """
