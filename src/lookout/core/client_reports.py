# src/lookout/core/client_reports.py
"""Accounting for events that never reached the ingestion endpoint.

Every drop, wherever it happens (sampling, processors, queue overflow,
rate limits, delivery failure, close), is recorded here exactly once,
bucketed by (reason, category). Pending counts are periodically sent as
a ``client_report`` envelope item; cumulative totals stay available for
health monitoring.

Aggregate logging: one warning per ``drop_log_interval`` drops instead of
one per drop, so a throttled backend cannot flood the host's logs.

Thread Safety:
    record() is called from capture threads and transport workers. All
    counters are protected by a single lock.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import structlog

from lookout.contracts.defaults import INTERNAL_DEFAULTS
from lookout.contracts.enums import DataCategory, DropReason

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DiscardedEvents:
    """Count of events dropped for one reason in one category."""

    reason: DropReason
    category: DataCategory
    quantity: int


@dataclass(frozen=True, slots=True)
class ClientReport:
    """Payload of a client_report envelope item."""

    timestamp: float
    discarded_events: tuple[DiscardedEvents, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "discarded_events": [
                {"reason": d.reason.value, "category": d.category.value, "quantity": d.quantity}
                for d in self.discarded_events
            ],
        }


class DropRecorder:
    """Counts dropped events by (reason, category).

    Example:
        >>> recorder = DropRecorder()
        >>> recorder.record(DropReason.QUEUE_OVERFLOW, DataCategory.ERROR)
        >>> recorder.totals[(DropReason.QUEUE_OVERFLOW, DataCategory.ERROR)]
        1
    """

    _LOG_INTERVAL = int(INTERNAL_DEFAULTS["logging"]["drop_log_interval"])

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Counter[tuple[DropReason, DataCategory]] = Counter()
        self._totals: Counter[tuple[DropReason, DataCategory]] = Counter()
        self._dropped_total = 0
        self._last_logged_drop_count = 0

    def record(self, reason: DropReason, category: DataCategory, quantity: int = 1) -> None:
        """Record dropped events.

        Args:
            reason: Why the events were dropped
            category: Data category of the dropped events
            quantity: Number of events (default 1)
        """
        if quantity <= 0:
            return
        with self._lock:
            key = (DropReason(reason), DataCategory(category))
            self._pending[key] += quantity
            self._totals[key] += quantity
            self._dropped_total += quantity
            logger.debug("Event dropped", reason=key[0].value, category=key[1].value, quantity=quantity)

            if self._dropped_total - self._last_logged_drop_count >= self._LOG_INTERVAL:
                logger.warning(
                    "Events dropped",
                    dropped_since_last_log=self._dropped_total - self._last_logged_drop_count,
                    dropped_total=self._dropped_total,
                    by_reason={f"{r.value}:{c.value}": n for (r, c), n in self._totals.items()},
                )
                self._last_logged_drop_count = self._dropped_total

    def pop_report(self) -> ClientReport | None:
        """Take the pending counts as a ClientReport, or None if nothing was dropped."""
        with self._lock:
            if not self._pending:
                return None
            discarded = tuple(
                DiscardedEvents(reason=reason, category=category, quantity=quantity)
                for (reason, category), quantity in sorted(self._pending.items())
            )
            self._pending.clear()
        return ClientReport(timestamp=time.time(), discarded_events=discarded)

    @property
    def totals(self) -> dict[tuple[DropReason, DataCategory], int]:
        """Cumulative drop counts since the recorder was created."""
        with self._lock:
            return dict(self._totals)

    @property
    def dropped_total(self) -> int:
        with self._lock:
            return self._dropped_total
