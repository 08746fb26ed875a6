"""Unit tests for core.models module.

# Test Coverage

The tests cover:
  - FieldRef: import paths, validation, hashability
  - BucketState: terminal states
  - DispatchResult: retryable flag
  - ShardResult / ImportSummary: aggregation and raise_for_failures
  - ShardImportError formatting

# Running Tests

Run with: pytest tests/unit/core/test_models.py
"""

import pytest

from bitmap_ingest.core.exceptions import ServerResponseError, ShardImportError
from bitmap_ingest.core.models import (
    BucketState,
    DispatchOutcome,
    DispatchResult,
    FieldRef,
    ImportSummary,
    ShardResult,
)


def _result(shard: int, state: BucketState, count: int = 10, error: str = "") -> ShardResult:
    return ShardResult(index="repo", field="stargazer", shard=shard, record_count=count, state=state, error_message=error)


class TestFieldRef:
    """Test suite for FieldRef."""

    def test_paths(self) -> None:
        field = FieldRef("repo", "stargazer")

        assert field.import_path == "/index/repo/field/stargazer/import"
        assert field.roaring_import_path(3) == "/index/repo/field/stargazer/import-roaring/3"

    def test_rejects_empty_names(self) -> None:
        with pytest.raises(ValueError):
            FieldRef("", "f")
        with pytest.raises(ValueError):
            FieldRef("i", "")

    def test_is_hashable_and_compares_by_value(self) -> None:
        """FieldRef is used as part of the scheduler's bucket key."""
        buckets = {(FieldRef("i", "f"), 0): "a"}

        assert buckets[(FieldRef("i", "f"), 0)] == "a"
        assert FieldRef("i", "f") != FieldRef("i", "f", index_keys=True)


class TestBucketState:
    @pytest.mark.parametrize(
        ("state", "terminal"),
        [
            (BucketState.ACCUMULATING, False),
            (BucketState.RETRY_PENDING, False),
            (BucketState.SUCCEEDED, True),
            (BucketState.FAILED, True),
            (BucketState.CANCELLED, True),
        ],
    )
    def test_terminal(self, state: BucketState, terminal: bool) -> None:
        assert state.terminal is terminal


class TestDispatchResult:
    def test_retryable(self) -> None:
        assert DispatchResult(outcome=DispatchOutcome.RETRYABLE, attempt=1).retryable is True
        assert DispatchResult(outcome=DispatchOutcome.TERMINAL, attempt=3).retryable is False


class TestImportSummary:
    """Test suite for ImportSummary."""

    def test_aggregates_results(self) -> None:
        summary = ImportSummary(
            results=[
                _result(0, BucketState.SUCCEEDED, count=3),
                _result(1, BucketState.FAILED, count=4, error="Server error (500): boom"),
                _result(2, BucketState.SUCCEEDED, count=5),
            ],
            skipped=2,
        )

        assert summary.total_records == 12
        assert [r.shard for r in summary.succeeded] == [0, 2]
        assert [r.shard for r in summary.failed] == [1]
        assert summary.all_success is False
        assert summary.skipped == 2

    def test_raise_for_failures_reports_shard(self) -> None:
        """Test that a caller can opt into aborting on the first failure.

        **Why this test is important:**
          - The pipeline never aborts globally on one shard
          - Callers that need all-or-nothing semantics rely on this hook

        **What it tests:**
          - ShardImportError carries index, field, shard and the message
        """
        summary = ImportSummary(results=[_result(7, BucketState.FAILED, error="Server error (400): bad")])

        with pytest.raises(ShardImportError) as exc_info:
            summary.raise_for_failures()

        err = exc_info.value
        assert (err.index, err.field, err.shard) == ("repo", "stargazer", 7)
        assert str(err) == "Server error (400): bad (index=repo, field=stargazer, shard=7)"

    def test_raise_for_failures_is_noop_on_success(self) -> None:
        summary = ImportSummary(results=[_result(0, BucketState.SUCCEEDED)])

        summary.raise_for_failures()
        assert summary.all_success is True

    def test_cancelled_batches_count_as_failed(self) -> None:
        summary = ImportSummary(results=[_result(0, BucketState.CANCELLED)])

        assert summary.all_success is False
        with pytest.raises(ShardImportError, match="shard batch cancelled"):
            summary.raise_for_failures()


class TestServerResponseError:
    def test_message_includes_status_and_truncated_body(self) -> None:
        err = ServerResponseError(500, b"x" * 1000, address="http://a:10101")

        assert str(err).startswith("Server error (500): ")
        assert len(str(err)) == len("Server error (500): ") + 512
        assert err.status_code == 500
        assert err.address == "http://a:10101"

    def test_empty_body(self) -> None:
        assert str(ServerResponseError(502)) == "Server error (502): empty response"
