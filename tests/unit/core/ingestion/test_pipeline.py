"""Unit tests for core.ingestion.pipeline module.

# Test Coverage

The tests cover:
  - run: summary of every shard batch, skipped empty records, option
    overrides, status callback
  - Isolation of shard failures (one failing or unencodable shard does not
    abort others)
  - Value and keyed batches end to end through the in-memory transport
  - Cancellation from another thread
  - close / context manager

# Running Tests

Run with: pytest tests/unit/core/ingestion/test_pipeline.py
"""

import threading
from collections.abc import Iterator

import pytest
from tenacity import wait_none

from bitmap_ingest.clients.interfaces.transport import TransportResponse
from bitmap_ingest.config import SHARD_WIDTH, ImportOptions, ImportStrategy
from bitmap_ingest.core.exceptions import RecordMismatchError, ShardImportError, TransportError
from bitmap_ingest.core.ingestion import bucket as bucket_module
from bitmap_ingest.core.ingestion import wire
from bitmap_ingest.core.ingestion.encoder import PROTOBUF_CONTENT_TYPE
from bitmap_ingest.core.ingestion.pipeline import ImportPipeline
from bitmap_ingest.core.models import BucketState, FieldRef, ShardResult
from bitmap_ingest.core.records import EMPTY_RECORD, SetRecord, ValueRecord

NODE_A = "http://node-a:10101"


@pytest.fixture
def pipeline(fake_transport, fake_topology, sleep_calls) -> ImportPipeline:
    return ImportPipeline(
        transport=fake_transport,
        topology=fake_topology,
        options=ImportOptions(strategy=ImportStrategy.BATCH, batch_size=1000),
        wait=wait_none(),
        sleep=sleep_calls.append,
    )


class TestRun:
    """Test suite for ImportPipeline.run."""

    def test_imports_every_shard(self, pipeline: ImportPipeline, fake_transport, field: FieldRef) -> None:
        """Test a multi-shard import end to end.

        **Why this test is important:**
          - This is the path every bulk load takes
          - The summary is the caller's only view of what was imported

        **What it tests:**
          - One request per shard
          - The summary counts every record and reports success
        """
        records = [SetRecord(row_id=r, column_id=c) for r in range(3) for c in (1, SHARD_WIDTH + 1, 2 * SHARD_WIDTH)]

        summary = pipeline.run(field, records)

        assert summary.all_success is True
        assert summary.total_records == 9
        assert sorted(r.shard for r in summary.results) == [0, 1, 2]
        assert len(fake_transport.sent) == 3

    def test_default_encoding_keeps_column_order(self, fake_transport, fake_topology, field: FieldRef) -> None:
        """Test the size-triggered batch with the default encoding.

        **Why this test is important:**
          - The server expects a batch sorted by column with its rows
            alongside; a roaring body would reorder by row

        **What it tests:**
          - (1,10), (5,20), (3,41) flush once as a CSV request
          - Columns decode as [10, 20, 41] with rows [1, 5, 3]
        """
        pipeline = ImportPipeline(transport=fake_transport, topology=fake_topology)
        records = [SetRecord(row_id=r, column_id=c) for r, c in [(1, 10), (5, 20), (3, 41)]]

        summary = pipeline.run(field, records, ImportOptions(batch_size=3, strategy=ImportStrategy.BATCH))

        assert summary.all_success is True
        assert len(fake_transport.sent) == 1
        _, path, payload, headers = fake_transport.sent[0]
        message = wire.decode_import_request(payload)
        assert path == "/index/repo/field/stargazer/import"
        assert headers["Content-Type"] == PROTOBUF_CONTENT_TYPE
        assert list(message.ColumnIDs) == [10, 20, 41]
        assert list(message.RowIDs) == [1, 5, 3]

    def test_skips_empty_records(self, pipeline: ImportPipeline, field: FieldRef) -> None:
        records = [EMPTY_RECORD, SetRecord(row_id=1, column_id=1), EMPTY_RECORD]

        summary = pipeline.run(field, records)

        assert summary.skipped == 2
        assert summary.total_records == 1

    def test_empty_source_sends_nothing(self, pipeline: ImportPipeline, fake_transport, field: FieldRef) -> None:
        summary = pipeline.run(field, iter(()))

        assert summary.results == []
        assert summary.all_success is True
        assert fake_transport.sent == []

    def test_options_override(self, pipeline: ImportPipeline, fake_transport, field: FieldRef) -> None:
        options = ImportOptions(strategy=ImportStrategy.BATCH, batch_size=2, roaring=False, clear=True)

        summary = pipeline.run(field, [SetRecord(row_id=1, column_id=c) for c in range(5)], options)

        assert [r.record_count for r in summary.results] == [2, 2, 1]
        assert {path for _, path, _, _ in fake_transport.sent} == {"/index/repo/field/stargazer/import?clear=true"}

    def test_value_import(self, pipeline: ImportPipeline, fake_transport) -> None:
        field = FieldRef("repo", "stars")

        pipeline.run(field, [ValueRecord(column_id=9, value=-4), ValueRecord(column_id=3, value=12)])

        _, path, payload, headers = fake_transport.sent[0]
        message = wire.decode_import_value_request(payload)
        assert path == "/index/repo/field/stars/import"
        assert headers["Content-Type"] == PROTOBUF_CONTENT_TYPE
        assert list(message.ColumnIDs) == [3, 9]
        assert list(message.Values) == [12, -4]

    def test_keyed_import_goes_to_shard_zero(self, pipeline: ImportPipeline, fake_transport) -> None:
        field = FieldRef("users", "color", index_keys=True, field_keys=True)
        records = [SetRecord(row_key="blue", column_key="u2"), SetRecord(row_key="red", column_key="u1")]

        summary = pipeline.run(field, records)

        assert [r.shard for r in summary.results] == [0]
        message = wire.decode_import_request(fake_transport.sent[0][2])
        assert list(message.ColumnKeys) == ["u1", "u2"]
        assert list(message.RowKeys) == ["red", "blue"]

    def test_mismatched_record_raises(self, pipeline: ImportPipeline, field: FieldRef) -> None:
        with pytest.raises(RecordMismatchError):
            pipeline.run(field, [SetRecord(row_key="blue", column_id=1)])

    def test_status_callback(self, pipeline: ImportPipeline, field: FieldRef) -> None:
        seen: list[ShardResult] = []

        summary = pipeline.run(field, [SetRecord(row_id=1, column_id=1)], status_callback=seen.append)

        assert seen == summary.results


class TestFailureIsolation:
    """Test suite for per-shard failure handling."""

    def test_failed_shard_does_not_abort_others(
        self, fake_transport, sleep_calls, field: FieldRef
    ) -> None:
        """Test that a terminal failure is reported, not raised.

        **Why this test is important:**
          - Aborting the job on one bad shard would drop unrelated data

        **What it tests:**
          - Shard 1 fails with a server error, shards 0 and 2 succeed
          - raise_for_failures names the failed shard
        """

        class ShardOwnerTopology:
            def __init__(self) -> None:
                self.removed: list[str] = []

            def address_for(self, index: str, shard: int) -> str:
                return f"http://node-{shard}:10101"

            def remove_address(self, address: str) -> None:
                self.removed.append(address)

        fake_transport.responses["http://node-1:10101"] = [TransportResponse(500, b"fragment locked")]
        pipeline = ImportPipeline(
            transport=fake_transport,
            topology=ShardOwnerTopology(),
            options=ImportOptions(strategy=ImportStrategy.BATCH, thread_count=3),
            wait=wait_none(),
            sleep=sleep_calls.append,
        )
        records = [SetRecord(row_id=1, column_id=shard * SHARD_WIDTH) for shard in range(3)]

        summary = pipeline.run(field, records)

        assert sorted(r.shard for r in summary.succeeded) == [0, 2]
        assert [(r.shard, r.state) for r in summary.failed] == [(1, BucketState.FAILED)]
        with pytest.raises(ShardImportError, match="fragment locked") as exc_info:
            summary.raise_for_failures()
        assert exc_info.value.shard == 1

    def test_unreachable_node_is_retried_elsewhere(
        self, pipeline: ImportPipeline, fake_transport, fake_topology, field: FieldRef
    ) -> None:
        fake_transport.responses[NODE_A] = [TransportError("connection refused")]

        summary = pipeline.run(field, [SetRecord(row_id=1, column_id=1)])

        assert summary.all_success is True
        assert summary.results[0].attempts == 2
        assert fake_topology.removed == [NODE_A]

    def test_unencodable_shard_does_not_abort_others(
        self, pipeline: ImportPipeline, fake_transport, field: FieldRef, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that an encoding error is reported as a failed shard.

        **Why this test is important:**
          - Encoding runs on worker threads; an escaping exception would
            surface from close() and lose every other shard's result

        **What it tests:**
          - run() returns a summary instead of raising
          - Shard 1 is FAILED with the encoding error, shards 0 and 2 succeed
        """
        real_encode = bucket_module.encode_batch

        def encode_or_fail(field_ref, shard, *args, **kwargs):
            if shard == 1:
                raise OverflowError("int too large to convert")
            return real_encode(field_ref, shard, *args, **kwargs)

        monkeypatch.setattr(bucket_module, "encode_batch", encode_or_fail)
        records = [SetRecord(row_id=1, column_id=shard * SHARD_WIDTH) for shard in range(3)]

        summary = pipeline.run(field, records)

        assert sorted(r.shard for r in summary.succeeded) == [0, 2]
        assert [(r.shard, r.state, r.attempts) for r in summary.failed] == [(1, BucketState.FAILED, 0)]
        assert "int too large to convert" in summary.failed[0].error_message
        assert len(fake_transport.sent) == 2

    def test_rows_past_roaring_range_are_imported(
        self, pipeline: ImportPipeline, fake_transport, field: FieldRef
    ) -> None:
        options = ImportOptions(strategy=ImportStrategy.BATCH, batch_size=1, roaring=True)
        records = [SetRecord(row_id=1, column_id=1), SetRecord(row_id=2**50, column_id=SHARD_WIDTH + 1)]

        summary = pipeline.run(field, records, options)

        assert summary.all_success is True
        assert sorted(path for _, path, _, _ in fake_transport.sent) == [
            "/index/repo/field/stargazer/import",
            "/index/repo/field/stargazer/import-roaring/0",
        ]


class TestCancel:
    def test_cancel_stops_consuming_the_source(self, pipeline: ImportPipeline, field: FieldRef) -> None:
        cancel_event = threading.Event()
        consumed = 0

        def source() -> Iterator[SetRecord]:
            nonlocal consumed
            for c in range(100):
                if c == 10:
                    cancel_event.set()
                consumed += 1
                yield SetRecord(row_id=1, column_id=c)

        summary = pipeline.run(field, source(), cancel_event=cancel_event)

        assert consumed == 11
        assert summary.total_records == 10
        assert [r.state for r in summary.results] == [BucketState.CANCELLED]
        assert summary.all_success is False


class TestClose:
    def test_context_manager_closes_transport(self, pipeline: ImportPipeline, fake_transport) -> None:
        with pipeline:
            pass

        assert fake_transport.closed is True
