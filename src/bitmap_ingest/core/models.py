"""Domain models for import operations.

This module defines the structured values passed between the scheduler,
encoder and dispatcher, and the results returned to callers. Using classes
instead of tuples keeps field names self-documenting and lets each stage
add helpers (properties, factories) without changing call sites.

All classes use `attrs` for concise, correct class definitions.
"""

from enum import Enum

import attrs

from .exceptions import ShardImportError

# =============================================================================
# Field reference
# =============================================================================


@attrs.define(frozen=True, slots=True)
class FieldRef:
    """Identifies the import target and how it is addressed.

    Attributes:
        index: Index name.
        field: Field name.
        index_keys: True if columns of this index are addressed by string key.
        field_keys: True if rows of this field are addressed by string key.

    Example:
        >>> FieldRef("repo", "stargazer").import_path
        '/index/repo/field/stargazer/import'
    """

    index: str = attrs.field(validator=attrs.validators.min_len(1))
    field: str = attrs.field(validator=attrs.validators.min_len(1))
    index_keys: bool = False
    field_keys: bool = False

    @property
    def import_path(self) -> str:
        return f"/index/{self.index}/field/{self.field}/import"

    def roaring_import_path(self, shard: int) -> str:
        return f"/index/{self.index}/field/{self.field}/import-roaring/{shard}"


# =============================================================================
# Encoded request
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ImportRequest:
    """An encoded shard batch, ready to POST.

    Built once per bucket and re-sent unchanged on retry.

    Attributes:
        path: Request path including the query string.
        payload: Encoded body.
        headers: HTTP headers for the request.
        roaring: True if the body is a roaring bitmap.
        clear: True if the batch removes bits/values.
        shard: Shard the batch belongs to.
        record_count: Number of records encoded in the body.
    """

    path: str
    payload: bytes
    headers: dict[str, str]
    roaring: bool
    clear: bool
    shard: int
    record_count: int


# =============================================================================
# Lifecycle and outcomes
# =============================================================================


class BucketState(str, Enum):
    """Lifecycle of a shard bucket.

    ACCUMULATING -> SEALED -> ENCODING -> DISPATCHING -> SUCCEEDED
                                              |  ^
                                              v  |
                                         RETRY_PENDING
    ENCODING/DISPATCHING -> FAILED; SEALED/ENCODING/RETRY_PENDING -> CANCELLED
    """

    ACCUMULATING = "accumulating"
    SEALED = "sealed"
    ENCODING = "encoding"
    DISPATCHING = "dispatching"
    RETRY_PENDING = "retry_pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (BucketState.SUCCEEDED, BucketState.FAILED, BucketState.CANCELLED)


class DispatchOutcome(str, Enum):
    """Result of one delivery attempt."""

    SUCCEEDED = "succeeded"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@attrs.define(frozen=True, slots=True)
class DispatchResult:
    """Result of a single POST of an import request.

    Attributes:
        outcome: SUCCEEDED, RETRYABLE (node dropped, try again) or TERMINAL.
        attempt: 1-based attempt number.
        address: Node the request was sent to, if one was resolved.
        status_code: HTTP status of the response, if one was received.
        error_message: Empty on success.
    """

    outcome: DispatchOutcome
    attempt: int
    address: str | None = None
    status_code: int | None = None
    error_message: str = ""

    @property
    def retryable(self) -> bool:
        return self.outcome is DispatchOutcome.RETRYABLE


@attrs.define(frozen=True, slots=True)
class ShardResult:
    """Final report for one shard batch.

    Attributes:
        index: Index name.
        field: Field name.
        shard: Shard number.
        record_count: Records in the batch.
        state: Terminal bucket state (SUCCEEDED, FAILED or CANCELLED).
        attempts: Delivery attempts made (0 if never sent).
        elapsed_ms: Time spent encoding and delivering, in milliseconds.
        address: Last node the batch was sent to.
        error_message: Empty string if the batch succeeded.
        thread_id: Identifier of the worker thread that handled the batch.

    Example:
        >>> result = ShardResult(index="i", field="f", shard=0, record_count=3,
        ...                      state=BucketState.SUCCEEDED, attempts=1)
        >>> result.success
        True
    """

    index: str
    field: str
    shard: int
    record_count: int
    state: BucketState
    attempts: int = 0
    elapsed_ms: float = 0.0
    address: str | None = None
    error_message: str = ""
    thread_id: int | None = None

    @property
    def success(self) -> bool:
        return self.state is BucketState.SUCCEEDED

    def to_error(self) -> ShardImportError:
        """Build the exception describing this failed batch."""
        message = self.error_message or f"shard batch {self.state.value}"
        return ShardImportError(message, index=self.index, field=self.field, shard=self.shard)


@attrs.define(frozen=True, slots=True)
class ImportSummary:
    """Aggregate result of an import job.

    Attributes:
        results: One ShardResult per flushed bucket, in completion order.
        skipped: Records ignored because they carried no value.
    """

    results: list[ShardResult]
    skipped: int = 0

    @property
    def total_records(self) -> int:
        return sum(r.record_count for r in self.results)

    @property
    def succeeded(self) -> list[ShardResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> list[ShardResult]:
        return [r for r in self.results if not r.success]

    @property
    def all_success(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        """Raise ShardImportError for the first failed shard batch, if any.

        Raises:
            ShardImportError: If at least one batch did not succeed.
        """
        failed = self.failed
        if failed:
            raise failed[0].to_error()
