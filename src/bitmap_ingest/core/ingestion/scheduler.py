"""Shard-partitioned batch scheduling.

The `BatchScheduler` routes each submitted record to the bucket of its
`(field, shard)`, decides when a bucket is flushed, and hands flushed buckets
to a bounded pool of worker threads.

## Flush policy

- `BATCH`: a bucket is flushed when it holds `batch_size` records.
- `TIMEOUT`: as BATCH, or when `timeout_ms` have passed since the bucket's
  first record, whichever comes first. Expiry is checked on every `submit()`
  and by a background ticker thread, so a stalled record source still
  flushes.
- End of stream (`flush_all()` / `close()`): every non-empty bucket is
  flushed regardless of size or age.

## Concurrency

One producer calls `submit()`. The producer and the ticker share the live
bucket map under one lock; a bucket is popped from the map and sealed inside
that lock, and only the caller whose `seal()` succeeds schedules it. A
semaphore with `thread_count` slots bounds the buckets in flight, so a fast
producer blocks instead of queueing unbounded work.

## Usage

```python
with BatchScheduler(options, dispatcher.deliver, field=field) as scheduler:
    for record in records:
        scheduler.submit(record)
results = scheduler.results
```
"""

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from bitmap_ingest.clients.mixins import LoggerMixin
from bitmap_ingest.config import ImportOptions, ImportStrategy
from bitmap_ingest.core.exceptions import BadRequestError, ImportCancelledError, IngestError, RecordMismatchError
from bitmap_ingest.core.models import BucketState, FieldRef, ShardResult
from bitmap_ingest.core.records import Record, RecordKind

from .bucket import ShardBucket

BucketKey = tuple[FieldRef, int]

# Bounds of the ticker interval, in seconds
_MIN_TICK = 0.005
_MAX_TICK = 1.0


class BatchScheduler(LoggerMixin):
    """Accumulates records per shard and flushes them to worker threads.

    Args:
        options: Batch size, timeout, strategy, thread count and encoding
            flags.
        deliver: Called on a worker thread with each flushed bucket; returns
            its ShardResult (normally `Dispatcher.deliver`).
        field: Default target field for `submit()`.
        status_callback: Called on the worker thread with every ShardResult.
        cancel_event: Shared cancellation flag.
        clock: Monotonic clock used to age buckets.
        start_ticker: Run the background expiry ticker (TIMEOUT strategy).
    """

    def __init__(
        self,
        options: ImportOptions,
        deliver: Callable[[ShardBucket], ShardResult],
        *,
        field: FieldRef | None = None,
        status_callback: Callable[[ShardResult], None] | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        start_ticker: bool = True,
    ) -> None:
        self.options = options
        self.field = field
        self._deliver = deliver
        self._status_callback = status_callback
        self._cancel_event = cancel_event or threading.Event()
        self._clock = clock

        self._lock = threading.Lock()
        self._live: dict[BucketKey, ShardBucket] = {}
        self._futures: dict[Future, ShardBucket] = {}
        self._results: list[ShardResult] = []
        self._slots = threading.BoundedSemaphore(options.thread_count)
        self._executor = ThreadPoolExecutor(max_workers=options.thread_count, thread_name_prefix="bitmap-ingest")
        self._closed = False

        self._stop_ticker = threading.Event()
        self._ticker: threading.Thread | None = None
        if start_ticker and options.strategy is ImportStrategy.TIMEOUT:
            self._ticker = threading.Thread(target=self._tick, name="bitmap-ingest-ticker", daemon=True)
            self._ticker.start()

    def __enter__(self) -> "BatchScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.cancel()
        self.close()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def results(self) -> list[ShardResult]:
        """Results reported so far, in completion order."""
        with self._lock:
            return list(self._results)

    @property
    def pending_records(self) -> int:
        """Records buffered in buckets that have not been flushed yet."""
        with self._lock:
            return sum(len(b) for b in self._live.values())

    # =========================================================================
    # Producer side
    # =========================================================================

    def submit(self, record: Record, field: FieldRef | None = None) -> None:
        """Route a record to its shard bucket and flush whatever is due.

        Args:
            record: SetRecord or ValueRecord.
            field: Target field; defaults to the scheduler's field.

        Raises:
            RecordMismatchError: If the record does not fit the bucket it is
                routed to.
            ImportCancelledError: If the job was cancelled.
            BadRequestError: If no target field is known.
        """
        if self.cancelled:
            raise ImportCancelledError("import was cancelled")
        field = field or self.field
        if field is None:
            raise BadRequestError("no target field given")
        kind = getattr(record, "kind", None)
        if not isinstance(kind, RecordKind):
            msg = f"{type(record).__name__} is not an importable record"
            raise RecordMismatchError(msg)

        key = (field, record.shard(self.options.shard_width))
        with self._lock:
            if self._closed:
                raise IngestError("scheduler is closed")
            bucket = self._live.get(key)
            if bucket is None:
                bucket = self._new_bucket(field, key[1], kind)
                bucket.append(record)
                self._live[key] = bucket
            else:
                bucket.append(record)

            due = []
            if len(bucket) >= self.options.batch_size:
                due.append(key)
            if self.options.strategy is ImportStrategy.TIMEOUT:
                due.extend(self._expired_keys())
            flushed = self._pop_and_seal(due)

        for b in flushed:
            self._schedule(b)

    def flush_expired(self, now: float | None = None) -> int:
        """Flush every bucket older than the timeout.

        Returns:
            Number of buckets flushed.
        """
        with self._lock:
            flushed = self._pop_and_seal(self._expired_keys(now=now))
        for b in flushed:
            self._schedule(b)
        return len(flushed)

    def flush_all(self) -> int:
        """Flush every non-empty bucket (end of stream).

        Returns:
            Number of buckets flushed.
        """
        with self._lock:
            flushed = self._pop_and_seal(list(self._live))
        for b in flushed:
            self._schedule(b)
        return len(flushed)

    def close(self) -> list[ShardResult]:
        """Flush remaining buckets, wait for every worker and return results.

        Raises:
            Exception: Whatever a worker raised that was not a delivery
                outcome (e.g. a failing status callback).
        """
        self._stop_ticker.set()
        if self._ticker is not None:
            self._ticker.join()
        self.flush_all()
        with self._lock:
            self._closed = True
            futures = list(self._futures)
        self._executor.shutdown(wait=True)
        for future in futures:
            if not future.cancelled():
                future.result()
        return self.results

    def cancel(self) -> None:
        """Cancel the job.

        Buckets still accumulating and buckets waiting for a worker are
        reported as CANCELLED. A POST already in progress completes; no
        retry follows it.
        """
        self._cancel_event.set()
        with self._lock:
            queued = list(self._futures.items())
            live = list(self._live.values())
            self._live.clear()

        self._logger.warning("Import cancelled", extra={"queued_batches": len(queued), "open_batches": len(live)})
        for future, bucket in queued:
            if future.cancel():
                self._slots.release()
                self._report_cancelled(bucket)
        for bucket in live:
            bucket.seal()
            self._report_cancelled(bucket)

    # =========================================================================
    # Internals
    # =========================================================================

    def _new_bucket(self, field: FieldRef, shard: int, kind: RecordKind) -> ShardBucket:
        return ShardBucket(
            field=field,
            shard=shard,
            kind=kind,
            clear=self.options.clear,
            roaring=self.options.roaring,
            shard_width=self.options.shard_width,
            clock=self._clock,
        )

    def _expired_keys(self, now: float | None = None) -> list[BucketKey]:
        # Caller holds self._lock
        if now is None:
            now = self._clock()
        timeout_s = self.options.timeout_s
        return [k for k, b in self._live.items() if b.expired(timeout_s, now)]

    def _pop_and_seal(self, keys: list[BucketKey]) -> list[ShardBucket]:
        # Caller holds self._lock
        flushed = []
        for key in keys:
            bucket = self._live.pop(key, None)
            if bucket is not None and len(bucket) > 0 and bucket.seal():
                flushed.append(bucket)
        return flushed

    def _acquire_slot(self) -> bool:
        while not self.cancelled:
            if self._slots.acquire(timeout=0.1):
                return True
        return False

    def _schedule(self, bucket: ShardBucket) -> None:
        if self._acquire_slot():
            if not self.cancelled:
                future = self._executor.submit(self._run, bucket)
                with self._lock:
                    self._futures[future] = bucket
                self._logger.debug(
                    "Scheduled shard batch",
                    extra={
                        "index": bucket.field.index,
                        "field": bucket.field.field,
                        "shard": bucket.shard,
                        "record_count": len(bucket),
                    },
                )
                return
            self._slots.release()
        self._report_cancelled(bucket)

    def _run(self, bucket: ShardBucket) -> ShardResult:
        try:
            result = self._deliver(bucket)
        finally:
            self._slots.release()
        self._report(result)
        return result

    def _report_cancelled(self, bucket: ShardBucket) -> None:
        bucket.transition(BucketState.CANCELLED)
        self._report(
            ShardResult(
                index=bucket.field.index,
                field=bucket.field.field,
                shard=bucket.shard,
                record_count=len(bucket),
                state=BucketState.CANCELLED,
            )
        )

    def _report(self, result: ShardResult) -> None:
        with self._lock:
            self._results.append(result)
        if self._status_callback is not None:
            self._status_callback(result)

    def _tick(self) -> None:
        interval = min(max(self.options.timeout_s / 2, _MIN_TICK), _MAX_TICK)
        while not self._stop_ticker.wait(interval):
            if self.cancelled:
                return
            self.flush_expired()
