"""Per-shard accumulation buffer.

A `ShardBucket` collects the records of one `(field, shard)` pair until the
scheduler flushes it, then turns them into a single `ImportRequest`.

## Lifecycle

```
ACCUMULATING -> SEALED -> ENCODING -> DISPATCHING -> SUCCEEDED
                                        |     ^
                                        v     |
                                    RETRY_PENDING
```

A batch that cannot be encoded or delivered ends in FAILED; a batch that
was sealed but never sent because the job was cancelled ends in CANCELLED.

`append` is only legal while ACCUMULATING. `seal` is atomic and reports
whether this call did the sealing, which is what makes a flush happen once
even when the producer and the timeout ticker race for the same bucket.
Records are sorted on the SEALED -> ENCODING transition, so the sort happens
exactly once and a retry re-sends the same bytes.
"""

import threading
import time
from collections.abc import Callable

import attrs

from bitmap_ingest.config import SHARD_WIDTH
from bitmap_ingest.core.exceptions import BucketStateError, RecordMismatchError
from bitmap_ingest.core.models import BucketState, FieldRef, ImportRequest
from bitmap_ingest.core.records import Record, RecordKind, sort_key

from .encoder import encode_batch

_TRANSITIONS: dict[BucketState, frozenset[BucketState]] = {
    BucketState.ACCUMULATING: frozenset({BucketState.SEALED}),
    BucketState.SEALED: frozenset({BucketState.ENCODING, BucketState.CANCELLED}),
    BucketState.ENCODING: frozenset({BucketState.DISPATCHING, BucketState.FAILED, BucketState.CANCELLED}),
    BucketState.DISPATCHING: frozenset({BucketState.SUCCEEDED, BucketState.RETRY_PENDING, BucketState.FAILED}),
    BucketState.RETRY_PENDING: frozenset({BucketState.DISPATCHING, BucketState.FAILED, BucketState.CANCELLED}),
    BucketState.SUCCEEDED: frozenset(),
    BucketState.FAILED: frozenset(),
    BucketState.CANCELLED: frozenset(),
}


@attrs.define(frozen=False, slots=True)
class ShardBucket:
    """Records of one field and shard, waiting to be imported.

    Attributes:
        field: Target field.
        shard: Shard every record belongs to.
        kind: Record kind the bucket accepts.
        clear: Encode the batch as a removal.
        roaring: Allow roaring encoding.
        shard_width: Columns per shard.
        clock: Monotonic clock used to age the bucket.

    Example:
        >>> bucket = ShardBucket(FieldRef("i", "f"), shard=0, kind=RecordKind.SET)
        >>> bucket.append(SetRecord(row_id=1, column_id=20))
        >>> bucket.append(SetRecord(row_id=1, column_id=10))
        >>> bucket.seal()
        True
        >>> bucket.to_import_request().record_count
        2
    """

    field: FieldRef
    shard: int
    kind: RecordKind
    clear: bool = False
    roaring: bool = False
    shard_width: int = SHARD_WIDTH
    clock: Callable[[], float] = time.monotonic
    _records: list[Record] = attrs.field(init=False, factory=list)
    _state: BucketState = attrs.field(init=False, default=BucketState.ACCUMULATING)
    _first_append_at: float | None = attrs.field(init=False, default=None)
    _request: ImportRequest | None = attrs.field(init=False, default=None)
    _lock: threading.Lock = attrs.field(init=False, factory=threading.Lock)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def state(self) -> BucketState:
        return self._state

    @property
    def records(self) -> tuple[Record, ...]:
        """Snapshot of the buffered records, in their current order."""
        with self._lock:
            return tuple(self._records)

    @property
    def first_append_at(self) -> float | None:
        return self._first_append_at

    def expired(self, timeout_s: float, now: float | None = None) -> bool:
        """True if the first record was appended at least `timeout_s` ago."""
        if self._first_append_at is None:
            return False
        if now is None:
            now = self.clock()
        return now - self._first_append_at >= timeout_s

    def _check_record(self, record: Record) -> None:
        if getattr(record, "kind", None) is not self.kind:
            msg = f"{type(record).__name__} cannot be added to a {self.kind.value} bucket"
            raise RecordMismatchError(msg)
        if record.keyed_column != self.field.index_keys:
            expected = "keys" if self.field.index_keys else "IDs"
            msg = f"index {self.field.index!r} addresses columns by {expected}"
            raise RecordMismatchError(msg)
        if self.kind is RecordKind.SET and record.keyed_row != self.field.field_keys:
            expected = "keys" if self.field.field_keys else "IDs"
            msg = f"field {self.field.field!r} addresses rows by {expected}"
            raise RecordMismatchError(msg)
        record_shard = record.shard(self.shard_width)
        if record_shard != self.shard:
            msg = f"record belongs to shard {record_shard}, bucket holds shard {self.shard}"
            raise RecordMismatchError(msg)

    def append(self, record: Record) -> None:
        """Add a record to the bucket.

        Raises:
            RecordMismatchError: If the record's kind, addressing or shard
                does not match the bucket.
            BucketStateError: If the bucket is no longer accumulating.
        """
        self._check_record(record)
        with self._lock:
            if self._state is not BucketState.ACCUMULATING:
                msg = f"cannot append to a bucket in state {self._state.value}"
                raise BucketStateError(msg)
            if self._first_append_at is None:
                self._first_append_at = self.clock()
            self._records.append(record)

    def seal(self) -> bool:
        """Stop accepting records.

        Returns:
            True if this call sealed the bucket, False if it was already sealed.
        """
        with self._lock:
            if self._state is not BucketState.ACCUMULATING:
                return False
            self._state = BucketState.SEALED
            return True

    def transition(self, new_state: BucketState) -> None:
        """Move to `new_state`.

        Raises:
            BucketStateError: If the transition is not allowed.
        """
        with self._lock:
            self._transition(new_state)

    def _transition(self, new_state: BucketState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            msg = f"illegal bucket transition {self._state.value} -> {new_state.value}"
            raise BucketStateError(msg)
        self._state = new_state

    def to_import_request(self) -> ImportRequest:
        """Sort and encode the batch, once.

        Seals the bucket if it is still accumulating. The first call sorts the
        records by column (stable) and encodes them; later calls return the
        same request.

        Raises:
            BucketStateError: If the bucket was cancelled before encoding.
        """
        with self._lock:
            if self._request is not None:
                return self._request
            if self._state is BucketState.ACCUMULATING:
                self._state = BucketState.SEALED
            self._transition(BucketState.ENCODING)
            self._records.sort(key=sort_key)
            self._request = encode_batch(
                self.field,
                self.shard,
                self.kind,
                self._records,
                clear=self.clear,
                roaring=self.roaring,
                shard_width=self.shard_width,
            )
            return self._request
