"""requests-based HTTP transport.

## Usage

```python
from bitmap_ingest.clients.transport import RequestsTransport

transport = RequestsTransport(connect_timeout=5, socket_timeout=60)
response = transport.send("http://localhost:10101", "/index/i/field/f/import", payload, headers)
```

## Design

- One pooled `requests.Session` shared by every worker thread
  (`create_retry_session`, transparent retries for GET only)
- Failures to get any response are raised as `TransportError`
- `send` returns non-2xx responses; `get_json` raises `ServerResponseError`
"""

from typing import Any

import attrs
import requests

from bitmap_ingest.config import ClusterConfig
from bitmap_ingest.core.exceptions import ServerResponseError, TransportError
from bitmap_ingest.foundation.http import create_retry_session

from .interfaces.transport import Transport, TransportResponse
from .mixins import LoggerMixin


@attrs.define(frozen=False, slots=True)
class RequestsTransport(LoggerMixin, Transport):
    """Transport over a pooled requests session.

    Attributes:
        connect_timeout: Connect timeout in seconds (default: 30).
        socket_timeout: Read timeout in seconds (default: 300).
        pool_size: Connections kept per host (default: 10).
        session: Optional requests.Session. If not provided, a session with
            GET-only retry logic is created.
    """

    connect_timeout: float = 30.0
    socket_timeout: float = 300.0
    pool_size: int = 10
    _session: requests.Session | None = attrs.field(default=None, alias="session")

    def __attrs_post_init__(self) -> None:
        if self._session is None:
            self._session = create_retry_session(pool_size=self.pool_size)

    @classmethod
    def from_config(cls, config: ClusterConfig, session: requests.Session | None = None) -> "RequestsTransport":
        """Create a transport from ClusterConfig."""
        if session is None:
            session = create_retry_session(max_retries=config.retry_max_attempts, pool_size=config.pool_size)
        return cls(
            connect_timeout=config.connect_timeout,
            socket_timeout=config.socket_timeout,
            pool_size=config.pool_size,
            session=session,
        )

    @property
    def session(self) -> requests.Session:
        assert self._session is not None
        return self._session

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.socket_timeout)

    def send(self, address: str, path: str, payload: bytes, headers: dict[str, str]) -> TransportResponse:
        url = f"{address}{path}"
        try:
            resp = self.session.post(url, data=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            msg = f"POST {url} failed: {e}"
            raise TransportError(msg, address=address) from e

        if not resp.ok:
            self._logger.warning(
                "Node returned an error status",
                extra={"address": address, "path": path, "status_code": resp.status_code},
            )
        return TransportResponse(status_code=resp.status_code, body=resp.content)

    def get_json(self, address: str, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{address}{path}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            msg = f"GET {url} failed: {e}"
            raise TransportError(msg, address=address) from e

        if not resp.ok:
            raise ServerResponseError(resp.status_code, resp.content, address=address)
        try:
            return resp.json()
        except ValueError as e:
            raise ServerResponseError(resp.status_code, resp.content, address=address) from e

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
