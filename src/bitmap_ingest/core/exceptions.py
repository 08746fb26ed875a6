"""Exception hierarchy for the ingest client.

This module defines the errors raised while batching, encoding and sending
import requests.

## Exception Hierarchy

Dependency failures inherit from `UpstreamError`
(`bitmap_ingest.foundation.exceptions`):

- `TransportError`: connection refused, timeout, I/O error. Recoverable:
  the node is dropped and the batch is retried.
- `ServerResponseError`: the node answered with a non-2xx status. Terminal.
- `NoAvailableHostsError`: every known address has been removed. Terminal.

Client-side errors inherit from `IngestError`:

- `BadRequestError` / `RecordMismatchError`: a record was routed into a
  bucket it does not belong to. Programmer error, never retried.
- `BucketStateError`: illegal bucket lifecycle transition.
- `ShardImportError`: a shard batch failed terminally.
- `ImportCancelledError`: the job was cancelled.

## Usage

```python
from bitmap_ingest.core.exceptions import ShardImportError

summary = pipeline.run(records)
try:
    summary.raise_for_failures()
except ShardImportError as e:
    print(e.index, e.field, e.shard)
```
"""

from bitmap_ingest.foundation.exceptions import UpstreamError


class IngestError(Exception):
    """Base exception class for client-side ingest errors."""


class BadRequestError(IngestError):
    """Exception raised when the caller provides invalid input."""


class RecordMismatchError(BadRequestError):
    """Exception raised when a record does not fit the bucket it was routed to.

    Examples:
        - A value record appended to a set-record bucket
        - A record whose shard differs from the bucket's shard
        - A key-addressed column appended to a bucket of an index without keys
    """


class BucketStateError(IngestError):
    """Exception raised for an illegal bucket lifecycle transition.

    Appending to a sealed bucket is the common case.
    """


class ShardImportError(IngestError):
    """Exception raised when a shard batch could not be imported.

    Attributes:
        index: Index name.
        field: Field name.
        shard: Shard number.
    """

    def __init__(self, message: str, *, index: str, field: str, shard: int) -> None:
        super().__init__(message)
        self.index = index
        self.field = field
        self.shard = shard

    def __str__(self) -> str:
        return f"{self.args[0]} (index={self.index}, field={self.field}, shard={self.shard})"


class ImportCancelledError(IngestError):
    """Exception raised when work is requested from a cancelled import job."""


class TransportError(UpstreamError):
    """Exception raised when a node cannot be reached.

    Attributes:
        address: Node address the request was sent to.
    """

    def __init__(self, message: str, *, address: str | None = None) -> None:
        super().__init__(message)
        self.address = address


class ServerResponseError(UpstreamError):
    """Exception raised when a node answers with a non-2xx status.

    Attributes:
        status_code: HTTP status code.
        body: Response body (truncated for the message).
        address: Node address that answered.
    """

    def __init__(self, status_code: int, body: bytes = b"", *, address: str | None = None) -> None:
        text = body.decode("utf-8", errors="replace").strip()
        super().__init__(f"Server error ({status_code}): {text[:512] or 'empty response'}")
        self.status_code = status_code
        self.body = body
        self.address = address


class NoAvailableHostsError(UpstreamError):
    """Exception raised when no usable node address is left."""


__all__ = [
    "BadRequestError",
    "BucketStateError",
    "ImportCancelledError",
    "IngestError",
    "NoAvailableHostsError",
    "RecordMismatchError",
    "ServerResponseError",
    "ShardImportError",
    "TransportError",
    "UpstreamError",
]
