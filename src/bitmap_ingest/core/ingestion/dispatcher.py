"""Delivery of encoded shard batches to cluster nodes.

## Failure policy

| what happened                         | outcome   | effect                          |
|---------------------------------------|-----------|---------------------------------|
| 2xx response                          | SUCCEEDED |                                 |
| no response (refused, timeout, I/O)   | RETRYABLE | node removed from the topology  |
| ... on the last allowed attempt       | TERMINAL  | node removed from the topology  |
| non-2xx response                      | TERMINAL  | never retried                   |
| no node left to try                   | TERMINAL  |                                 |

A batch that fails to encode is never sent; it ends FAILED after zero attempts.

A retry resolves the node again, so it goes to a different replica (or a
fresh lookup) rather than to the node that just failed. The retry loop is a
bounded tenacity `Retrying` with injectable wait and sleep.
"""

import threading
import time
from collections.abc import Callable

import attrs
from tenacity import Retrying, retry_if_result, stop_after_attempt
from tenacity.wait import wait_base

from bitmap_ingest.clients.interfaces.topology import ClusterTopology
from bitmap_ingest.clients.interfaces.transport import Transport
from bitmap_ingest.clients.mixins import LoggerMixin
from bitmap_ingest.core.exceptions import (
    ImportCancelledError,
    NoAvailableHostsError,
    ServerResponseError,
    TransportError,
    UpstreamError,
)
from bitmap_ingest.core.models import (
    BucketState,
    DispatchOutcome,
    DispatchResult,
    FieldRef,
    ImportRequest,
    ShardResult,
)
from bitmap_ingest.foundation.retry import create_retry_logger, default_backoff

from .bucket import ShardBucket

DEFAULT_MAX_ATTEMPTS = 3


@attrs.define(frozen=False, slots=True)
class Dispatcher(LoggerMixin):
    """Sends import requests and applies the node-failure policy.

    Attributes:
        transport: HTTP transport.
        topology: Node resolver; failed nodes are removed from it.
        max_attempts: Attempts per batch, including the first. Default: 3.
        wait: tenacity wait strategy between attempts. Default: exponential
            backoff.
        sleep: Function used to sleep between attempts. Default: time.sleep.
        cancel_event: When set, no further attempt is made.

    Example:
        ```python
        dispatcher = Dispatcher(transport, topology, max_attempts=3)
        result = dispatcher.deliver(bucket)
        if not result.success:
            print(result.error_message)
        ```
    """

    transport: Transport
    topology: ClusterTopology
    max_attempts: int = attrs.field(default=DEFAULT_MAX_ATTEMPTS, validator=attrs.validators.ge(1))
    wait: wait_base = attrs.field(factory=default_backoff)
    sleep: Callable[[float], None] = time.sleep
    cancel_event: threading.Event = attrs.field(factory=threading.Event)

    def dispatch(self, request: ImportRequest, field: FieldRef, shard: int, attempt: int = 1) -> DispatchResult:
        """Make one delivery attempt.

        Args:
            request: Encoded batch.
            field: Target field.
            shard: Shard the batch belongs to.
            attempt: 1-based attempt number.

        Returns:
            DispatchResult describing the outcome.
        """
        last_attempt = attempt >= self.max_attempts
        try:
            address = self.topology.address_for(field.index, shard)
        except NoAvailableHostsError as e:
            return DispatchResult(outcome=DispatchOutcome.TERMINAL, attempt=attempt, error_message=str(e))
        except UpstreamError as e:
            outcome = DispatchOutcome.TERMINAL if last_attempt else DispatchOutcome.RETRYABLE
            return DispatchResult(outcome=outcome, attempt=attempt, error_message=str(e))

        try:
            response = self.transport.send(address, request.path, request.payload, request.headers)
        except TransportError as e:
            self._logger.warning(
                "Node unreachable, removing it",
                extra={"address": address, "index": field.index, "shard": shard, "attempt": attempt, "error": str(e)},
            )
            self.topology.remove_address(address)
            outcome = DispatchOutcome.TERMINAL if last_attempt else DispatchOutcome.RETRYABLE
            return DispatchResult(outcome=outcome, attempt=attempt, address=address, error_message=str(e))

        if not response.ok:
            error = ServerResponseError(response.status_code, response.body, address=address)
            return DispatchResult(
                outcome=DispatchOutcome.TERMINAL,
                attempt=attempt,
                address=address,
                status_code=response.status_code,
                error_message=str(error),
            )

        return DispatchResult(
            outcome=DispatchOutcome.SUCCEEDED,
            attempt=attempt,
            address=address,
            status_code=response.status_code,
        )

    def deliver(self, bucket: ShardBucket) -> ShardResult:
        """Encode a sealed bucket and deliver it, retrying per the policy.

        Args:
            bucket: A sealed (or still accumulating) bucket.

        Returns:
            ShardResult in state SUCCEEDED, FAILED or CANCELLED.
        """
        started = time.monotonic()
        field = bucket.field

        if self.cancel_event.is_set():
            bucket.seal()
            bucket.transition(BucketState.CANCELLED)
            return self._result(bucket, started, attempts=0)

        try:
            request = bucket.to_import_request()
        except Exception as e:
            if bucket.state is BucketState.CANCELLED:
                return self._result(bucket, started, attempts=0)
            bucket.transition(BucketState.FAILED)
            self._logger.exception(
                "Failed to encode shard batch",
                extra={"index": field.index, "field": field.field, "shard": bucket.shard, "error": str(e)},
            )
            return self._result(bucket, started, attempts=0, error_message=f"Failed to encode batch: {e}")
        attempts = 0

        def attempt_once() -> DispatchResult:
            nonlocal attempts
            attempts += 1
            attempt = attempts
            if attempt > 1 and self.cancel_event.is_set():
                raise ImportCancelledError("import cancelled before retry")
            bucket.transition(BucketState.DISPATCHING)
            result = self.dispatch(request, field, bucket.shard, attempt)
            if result.retryable:
                bucket.transition(BucketState.RETRY_PENDING)
            return result

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            sleep=self.sleep,
            retry=retry_if_result(lambda r: r.retryable and not self.cancel_event.is_set()),
            before_sleep=create_retry_logger(
                self._logger,
                message="Import attempt failed, retrying",
                get_result_details=lambda r: {
                    "index": field.index,
                    "field": field.field,
                    "shard": bucket.shard,
                    "address": r.address,
                    "error": r.error_message,
                },
            ),
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )

        try:
            result = retrying(attempt_once)
        except ImportCancelledError:
            bucket.transition(BucketState.CANCELLED)
            return self._result(bucket, started, attempts=attempts - 1)

        if result.outcome is DispatchOutcome.SUCCEEDED:
            bucket.transition(BucketState.SUCCEEDED)
            self._logger.info(
                "Imported shard batch",
                extra={
                    "index": field.index,
                    "field": field.field,
                    "shard": bucket.shard,
                    "record_count": request.record_count,
                    "address": result.address,
                    "attempt": result.attempt,
                    "elapsed_ms": round((time.monotonic() - started) * 1000, 1),
                },
            )
            return self._result(bucket, started, attempts=result.attempt, address=result.address)

        if result.retryable:
            # Stopped retrying because the job was cancelled.
            bucket.transition(BucketState.CANCELLED)
        else:
            bucket.transition(BucketState.FAILED)
            self._logger.error(
                "Shard batch failed",
                extra={
                    "index": field.index,
                    "field": field.field,
                    "shard": bucket.shard,
                    "record_count": request.record_count,
                    "address": result.address,
                    "attempt": result.attempt,
                    "error": {"message": result.error_message, "status_code": result.status_code},
                },
            )
        return self._result(
            bucket,
            started,
            attempts=result.attempt,
            address=result.address,
            error_message=result.error_message,
        )

    def _result(
        self,
        bucket: ShardBucket,
        started: float,
        *,
        attempts: int,
        address: str | None = None,
        error_message: str = "",
    ) -> ShardResult:
        return ShardResult(
            index=bucket.field.index,
            field=bucket.field.field,
            shard=bucket.shard,
            record_count=len(bucket),
            state=bucket.state,
            attempts=attempts,
            elapsed_ms=(time.monotonic() - started) * 1000,
            address=address,
            error_message=error_message,
            thread_id=threading.get_ident(),
        )
