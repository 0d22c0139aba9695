# src/lookout/transport/manager.py
"""TransportManager delivers envelopes on background worker threads.

The TransportManager is the only shared mutable resource crossing thread
boundaries:
1. send() applies rate limits and capacity, then queues the envelope
2. max_concurrency worker threads take entries in FIFO order
3. Each delivery is retried with tenacity on network errors and 5xx
4. Rate-limit headers update a per-category deadline table
5. Every discarded item is counted in the DropRecorder
6. Health metrics are tracked for monitoring

Per-envelope state machine:
    queued -> in-flight -> delivered
                        -> retrying -> in-flight
                        -> rate-limited (discarded)
                        -> failed (discarded)
    queued -> overflow / rate-limited / client_closed (discarded)

Nothing raised inside delivery reaches the caller: outcomes are reported
through the Future returned by send() and through drop accounting.

Thread Safety:
    The queue, in-flight count, rate-limit table and metrics are guarded by
    a single threading.Condition. Futures are resolved outside the lock so
    done-callbacks (after_send_event listeners) may call back into send().
    Worker threads are daemon threads: an undelivered envelope never keeps
    the host process alive.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

import structlog

from lookout.contracts.defaults import INTERNAL_DEFAULTS
from lookout.contracts.enums import DeliveryOutcome, DropReason, OverflowPolicy
from lookout.contracts.errors import ClientClosedError, DeliveryFailure, QueueOverflow, RateLimited
from lookout.core.client_reports import DropRecorder
from lookout.core.clock import Clock
from lookout.core.envelope import Envelope
from lookout.transport.buffer import EnvelopeBuffer, QueueEntry
from lookout.transport.protocols import TransportProtocol, TransportRequest, TransportResponse
from lookout.transport.rate_limits import RateLimitTable
from lookout.transport.retry import RetryConfig, build_retrying

logger = structlog.get_logger(__name__)

_CONTENT_TYPE = str(INTERNAL_DEFAULTS["transport"]["content_type"])
_WORKER_JOIN_SECONDS = float(INTERNAL_DEFAULTS["transport"]["worker_join_seconds"])


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    """Terminal outcome of one send()."""

    outcome: DeliveryOutcome
    status_code: int | None = None
    attempts: int = 0
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED


def _resolve(future: Future[DeliveryResult], result: DeliveryResult) -> None:
    if not future.done():
        future.set_result(result)


class TransportManager:
    """Queues envelopes and delivers them with bounded concurrency.

    Overflow policies:
    - REJECT_NEW: send() resolves QUEUE_OVERFLOW when pending is at capacity
    - DROP_OLDEST: the oldest queued envelope is evicted instead

    Example:
        >>> manager = TransportManager(backend, DropRecorder(), buffer_size=64)
        >>> result = manager.send(envelope).result(timeout=5)
        >>> result.outcome
        <DeliveryOutcome.DELIVERED: 'delivered'>
        >>> manager.close(timeout=2.0)
        True
    """

    def __init__(
        self,
        backend: TransportProtocol,
        recorder: DropRecorder,
        *,
        buffer_size: int = 64,
        max_concurrency: int = 2,
        overflow_policy: OverflowPolicy = OverflowPolicy.REJECT_NEW,
        retry: RetryConfig | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        """Initialize the manager and start its workers.

        Args:
            backend: Configured transport backend
            recorder: Drop accounting shared with the client
            buffer_size: Maximum pending envelopes (queued + in-flight)
            max_concurrency: Number of worker threads
            overflow_policy: Behavior when pending reaches buffer_size
            retry: Retry policy (default RetryConfig())
            clock: Clock for rate-limit deadlines
            sleep: Backoff sleep override (tests)
        """
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {buffer_size}")
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

        self._backend = backend
        self._recorder = recorder
        self._buffer_size = buffer_size
        self._overflow_policy = OverflowPolicy(overflow_policy)
        self._retry = retry or RetryConfig()
        self._sleep = sleep
        self._rate_limits = RateLimitTable(clock)

        self._cond = threading.Condition()
        self._queue = EnvelopeBuffer()
        self._in_flight = 0
        self._closed = False
        self._closing = False
        self._close_result: bool | None = None
        self._shutdown_event = threading.Event()

        # Health metrics (guarded by _cond)
        self._delivered = 0
        self._failed = 0
        self._rate_limited = 0
        self._overflowed = 0
        self._retries = 0

        self._workers = [
            threading.Thread(target=self._worker_loop, name=f"lookout-transport-{i}", daemon=True)
            for i in range(max_concurrency)
        ]
        for worker in self._workers:
            worker.start()

    @property
    def backend(self) -> TransportProtocol:
        return self._backend

    @property
    def rate_limits(self) -> RateLimitTable:
        return self._rate_limits

    @property
    def is_closed(self) -> bool:
        return self._closed

    # =========================================================================
    # Enqueue
    # =========================================================================

    def send(self, envelope: Envelope) -> Future[DeliveryResult]:
        """Queue an envelope for delivery.

        Never blocks on I/O. Items of rate-limited categories are removed
        before queueing; capacity is checked against queued + in-flight.

        Returns:
            Future resolved with the DeliveryResult.

        Raises:
            ClientClosedError: If close() has been called.
        """
        future: Future[DeliveryResult] = Future()
        resolutions: list[tuple[Future[DeliveryResult], DeliveryResult]] = []

        with self._cond:
            if self._closed:
                raise ClientClosedError("Transport is closed; envelope not accepted")

            remaining = self._drop_rate_limited_items(envelope)
            if remaining is None:
                self._rate_limited += 1
                resolutions.append((future, DeliveryResult(DeliveryOutcome.RATE_LIMITED, error=RateLimited.reason.value)))
            elif self._pending() >= self._buffer_size and not self._make_room(resolutions):
                self._overflowed += 1
                self._record_items(remaining, QueueOverflow.reason)
                resolutions.append((future, DeliveryResult(DeliveryOutcome.QUEUE_OVERFLOW, error=QueueOverflow.reason.value)))
            else:
                self._queue.append(QueueEntry(envelope=remaining, future=future))
                self._cond.notify_all()

        for pending_future, result in resolutions:
            _resolve(pending_future, result)
        return future

    def _pending(self) -> int:
        return len(self._queue) + self._in_flight

    def _make_room(self, resolutions: list[tuple[Future[DeliveryResult], DeliveryResult]]) -> bool:
        """Apply the drop-oldest policy. Must be called while holding _cond."""
        if self._overflow_policy != OverflowPolicy.DROP_OLDEST:
            return False
        evicted = self._queue.evict_oldest()
        if evicted is None:
            # Everything pending is in flight; nothing can be evicted
            return False
        self._overflowed += 1
        self._record_items(evicted.envelope, QueueOverflow.reason)
        resolutions.append(
            (evicted.future, DeliveryResult(DeliveryOutcome.QUEUE_OVERFLOW, attempts=evicted.attempts, error=QueueOverflow.reason.value))
        )
        return True

    def _drop_rate_limited_items(self, envelope: Envelope) -> Envelope | None:
        """Remove items whose category is in cooldown, recording each.

        Must be called while holding _cond.
        """
        if not envelope.items:
            return envelope
        remaining = envelope.filter_items(lambda item: not self._rate_limits.is_limited(item.data_category))
        if remaining is envelope:
            return envelope
        kept = set(map(id, remaining.items)) if remaining is not None else set()
        for item in envelope.items:
            if id(item) not in kept:
                self._recorder.record(RateLimited.reason, item.data_category)
        return remaining

    def _record_items(self, envelope: Envelope, reason: DropReason) -> None:
        for category in envelope.categories:
            self._recorder.record(reason, category)

    # =========================================================================
    # Delivery (worker threads)
    # =========================================================================

    def _worker_loop(self) -> None:
        while True:
            with self._cond:
                while not self._queue and not self._shutdown_event.is_set():
                    self._cond.wait()
                if self._shutdown_event.is_set():
                    return
                entry = self._queue.popleft()
                self._in_flight += 1

            try:
                result = self._deliver(entry)
            except Exception as e:
                # CRITICAL: log but don't die - a dead worker would stall the queue
                logger.error("Delivery failed unexpectedly", error=str(e), error_type=type(e).__name__)
                self._record_items(entry.envelope, DropReason.INTERNAL_SDK_ERROR)
                with self._cond:
                    self._failed += 1
                result = DeliveryResult(DeliveryOutcome.FAILED, attempts=entry.attempts, error=str(e))

            try:
                _resolve(entry.future, result)
            finally:
                with self._cond:
                    self._in_flight -= 1
                    self._cond.notify_all()

    def _deliver(self, entry: QueueEntry) -> DeliveryResult:
        """Deliver one entry with retries.

        Returns:
            The terminal DeliveryResult (never raises DeliveryFailure).
        """
        retrying = build_retrying(self._retry, shutdown=self._shutdown_event, sleep=self._sleep)
        try:
            for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        with self._cond:
                            self._retries += 1
                    return self._attempt(entry)
        except DeliveryFailure as e:
            self._record_items(entry.envelope, DropReason.NETWORK_ERROR)
            with self._cond:
                self._failed += 1
            logger.warning(
                "Envelope delivery failed after retries",
                attempts=entry.attempts,
                status_code=e.status_code,
                error=str(e),
            )
            return DeliveryResult(DeliveryOutcome.FAILED, status_code=e.status_code, attempts=entry.attempts, error=str(e))
        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def _attempt(self, entry: QueueEntry) -> DeliveryResult:
        entry.attempts += 1

        with self._cond:
            remaining = self._drop_rate_limited_items(entry.envelope)
            if remaining is None:
                self._rate_limited += 1
                return DeliveryResult(DeliveryOutcome.RATE_LIMITED, attempts=entry.attempts, error=RateLimited.reason.value)
            entry.envelope = remaining

        request = TransportRequest(body=remaining.serialize(), headers={"Content-Type": _CONTENT_TYPE})
        try:
            response = self._backend.send(request)
        except Exception as e:
            logger.debug("Transport request failed", attempt=entry.attempts, error=str(e), error_type=type(e).__name__)
            raise DeliveryFailure(f"Network error: {e}") from e

        self._apply_rate_limits(response)
        return self._classify(entry, remaining, response)

    def _apply_rate_limits(self, response: TransportResponse) -> None:
        resolutions: list[tuple[Future[DeliveryResult], DeliveryResult]] = []
        with self._cond:
            if not self._rate_limits.update(response.status_code, response.headers):
                return
            for queued in self._queue:
                remaining = self._drop_rate_limited_items(queued.envelope)
                if remaining is not None:
                    queued.envelope = remaining
            purged = self._queue.remove_if(
                lambda q: bool(q.envelope.items) and all(self._rate_limits.is_limited(c) for c in q.envelope.categories)
            )
            for queued in purged:
                self._rate_limited += 1
                resolutions.append(
                    (queued.future, DeliveryResult(DeliveryOutcome.RATE_LIMITED, attempts=queued.attempts, error=RateLimited.reason.value))
                )
            self._cond.notify_all()
        for future, result in resolutions:
            _resolve(future, result)

    def _classify(self, entry: QueueEntry, envelope: Envelope, response: TransportResponse) -> DeliveryResult:
        status = response.status_code
        if 200 <= status < 300:
            with self._cond:
                self._delivered += 1
            return DeliveryResult(DeliveryOutcome.DELIVERED, status_code=status, attempts=entry.attempts)

        if status in (429, 529):
            self._record_items(envelope, DropReason.RATELIMIT_BACKOFF)
            with self._cond:
                self._rate_limited += 1
            return DeliveryResult(DeliveryOutcome.RATE_LIMITED, status_code=status, attempts=entry.attempts, error=RateLimited.reason.value)

        if status >= 500:
            raise DeliveryFailure(f"Server error {status}", status_code=status)

        self._record_items(envelope, DropReason.SEND_ERROR)
        with self._cond:
            self._failed += 1
        logger.warning("Envelope rejected by backend", status_code=status, event_id=envelope.event_id)
        return DeliveryResult(DeliveryOutcome.FAILED, status_code=status, attempts=entry.attempts, error=f"HTTP {status}")

    # =========================================================================
    # Draining
    # =========================================================================

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until nothing is queued or in flight.

        Does not block concurrent send() calls; envelopes queued during the
        wait are waited for too.

        Args:
            timeout: Seconds to wait; None waits forever

        Returns:
            True if drained, False if the timeout elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._pending() > 0:
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def close(self, timeout: float | None = None) -> bool:
        """Flush, then permanently stop accepting envelopes.

        Shutdown sequence:
        1. flush(timeout) - send() still accepted while draining
        2. Mark closed, discard whatever is still queued (client_closed)
        3. Signal workers (also interrupts retry backoff)
        4. Join workers (briefly; they are daemon threads)
        5. Close the backend

        Idempotent: later calls return the first call's result.

        Returns:
            True if everything queued before close() was drained.
        """
        with self._cond:
            if self._closing:
                return bool(self._close_result)
            self._closing = True

        drained = self.flush(timeout)

        with self._cond:
            self._closed = True
            discarded = self._queue.drain()
            self._shutdown_event.set()
            self._cond.notify_all()

        for entry in discarded:
            self._record_items(entry.envelope, DropReason.CLIENT_CLOSED)
            _resolve(entry.future, DeliveryResult(DeliveryOutcome.CLIENT_CLOSED, attempts=entry.attempts))
        if discarded:
            logger.warning("Queued envelopes discarded on close", discarded=len(discarded))

        join_timeout = _WORKER_JOIN_SECONDS if drained else 0.0
        current = threading.current_thread()
        for worker in self._workers:
            if worker is not current:
                worker.join(timeout=join_timeout)

        logger.info("Transport manager closing", **self.health_metrics)
        try:
            self._backend.close()
        except Exception as e:
            logger.warning("Transport backend close failed", backend=self._backend.name, error=str(e))

        with self._cond:
            self._close_result = drained
        return drained

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of delivery health for monitoring.

        - delivered / failed / rate_limited / overflowed: envelope counts
        - retries: attempts beyond the first
        - queue_depth / in_flight / buffer_size: current backlog
        - rate_limits: remaining cooldown seconds per category
        """
        with self._cond:
            return {
                "delivered": self._delivered,
                "failed": self._failed,
                "rate_limited": self._rate_limited,
                "overflowed": self._overflowed,
                "retries": self._retries,
                "queue_depth": len(self._queue),
                "in_flight": self._in_flight,
                "buffer_size": self._buffer_size,
                "rate_limits": self._rate_limits.active,
                "closed": self._closed,
            }

