"""Bulk import pipeline.

Drives a record source through the scheduler, encoder and dispatcher:

```
records -> BatchScheduler.submit -> [full / expired / end of stream]
        -> worker: ShardBucket.to_import_request -> Dispatcher.deliver
        -> ShardResult (+ status callback) -> ImportSummary
```

One shard failing does not stop the others; the summary reports every
shard batch and `ImportSummary.raise_for_failures()` lets the caller decide.
"""

import threading
import time
from collections.abc import Callable, Iterable

import attrs
from tenacity.wait import wait_base

from bitmap_ingest.clients.interfaces.topology import ClusterTopology
from bitmap_ingest.clients.interfaces.transport import Transport
from bitmap_ingest.clients.mixins import LoggerMixin
from bitmap_ingest.config import ImportOptions
from bitmap_ingest.core.models import FieldRef, ImportSummary, ShardResult
from bitmap_ingest.core.records import EmptyRecord, Record
from bitmap_ingest.foundation.retry import default_backoff

from .dispatcher import DEFAULT_MAX_ATTEMPTS, Dispatcher
from .scheduler import BatchScheduler

StatusCallback = Callable[[ShardResult], None]


@attrs.define(frozen=False, slots=True)
class ImportPipeline(LoggerMixin):
    """Imports record streams into a cluster.

    Attributes:
        transport: HTTP transport shared by every job.
        topology: Node resolver shared by every job.
        options: Default import options.
        max_attempts: Delivery attempts per shard batch.
        wait: Backoff between attempts.
        sleep: Sleep function used between attempts.

    Example:
        ```python
        pipeline = ImportPipeline(transport, topology)
        summary = pipeline.run(FieldRef("repo", "stargazer"), records)
        summary.raise_for_failures()
        ```
    """

    transport: Transport
    topology: ClusterTopology
    options: ImportOptions = attrs.field(factory=ImportOptions)
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    wait: wait_base = attrs.field(factory=default_backoff)
    sleep: Callable[[float], None] = time.sleep

    def run(
        self,
        field: FieldRef,
        records: Iterable[Record | EmptyRecord],
        options: ImportOptions | None = None,
        *,
        status_callback: StatusCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ImportSummary:
        """Import every record of `records` into `field`.

        Args:
            field: Target field.
            records: Finite record source. `EMPTY_RECORD` entries are skipped.
            options: Overrides the pipeline's default options.
            status_callback: Called from worker threads with each ShardResult.
            cancel_event: Set it from another thread to cancel the job.

        Returns:
            ImportSummary with one ShardResult per shard batch.

        Raises:
            RecordMismatchError: If a record does not fit the field.
        """
        options = options or self.options
        cancel_event = cancel_event or threading.Event()
        dispatcher = Dispatcher(
            transport=self.transport,
            topology=self.topology,
            max_attempts=self.max_attempts,
            wait=self.wait,
            sleep=self.sleep,
            cancel_event=cancel_event,
        )

        started = time.monotonic()
        skipped = 0
        submitted = 0
        with BatchScheduler(
            options,
            dispatcher.deliver,
            field=field,
            status_callback=status_callback,
            cancel_event=cancel_event,
        ) as scheduler:
            for record in records:
                if cancel_event.is_set():
                    break
                if isinstance(record, EmptyRecord):
                    skipped += 1
                    continue
                scheduler.submit(record)
                submitted += 1

        summary = ImportSummary(results=scheduler.results, skipped=skipped)
        self._logger.info(
            "Import finished",
            extra={
                "index": field.index,
                "field": field.field,
                "record_count": submitted,
                "skipped": skipped,
                "batches": len(summary.results),
                "failed_batches": len(summary.failed),
                "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return summary

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "ImportPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
