# src/lookout/transport/buffer.py
"""Bounded FIFO of envelopes waiting for a delivery worker.

Key design decisions:
- Capacity is enforced by the TransportManager against the pending count
  (queued + in-flight), not by the buffer itself, so the buffer never
  evicts silently.
- evict_oldest() supports the drop-oldest overflow policy.
- Aggregate logging: one warning every 100 evictions.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from lookout.contracts.defaults import INTERNAL_DEFAULTS

if TYPE_CHECKING:
    from lookout.core.envelope import Envelope
    from lookout.transport.manager import DeliveryResult

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class QueueEntry:
    """An envelope on its way to the backend.

    ``attempts`` only ever increases. ``envelope`` may be replaced by a
    filtered copy when a rate limit removes some of its items.
    """

    envelope: Envelope
    future: Future[DeliveryResult] = field(default_factory=Future)
    enqueued_at: float = field(default_factory=time.monotonic)
    attempts: int = 0


class EnvelopeBuffer:
    """FIFO of QueueEntry objects.

    Thread Safety:
        NOT thread-safe. The TransportManager serializes all access under
        its condition lock.

    Example:
        buffer = EnvelopeBuffer()
        buffer.append(QueueEntry(envelope))
        entry = buffer.popleft()
    """

    _LOG_INTERVAL = int(INTERNAL_DEFAULTS["logging"]["drop_log_interval"])

    def __init__(self) -> None:
        self._entries: deque[QueueEntry] = deque()
        self._evicted_count = 0
        self._last_logged_evicted_count = 0

    def append(self, entry: QueueEntry) -> None:
        self._entries.append(entry)

    def popleft(self) -> QueueEntry:
        """Remove and return the oldest entry.

        Raises:
            IndexError: If the buffer is empty.
        """
        return self._entries.popleft()

    def evict_oldest(self) -> QueueEntry | None:
        """Remove the oldest entry to make room; None if the buffer is empty."""
        if not self._entries:
            return None
        entry = self._entries.popleft()
        self._evicted_count += 1
        if self._evicted_count - self._last_logged_evicted_count >= self._LOG_INTERVAL:
            logger.warning(
                "Transport buffer overflow - oldest envelopes evicted",
                evicted_since_last_log=self._evicted_count - self._last_logged_evicted_count,
                evicted_total=self._evicted_count,
                hint="Consider increasing transport.buffer_size",
            )
            self._last_logged_evicted_count = self._evicted_count
        return entry

    def drain(self) -> list[QueueEntry]:
        """Remove and return every entry, oldest first."""
        entries = list(self._entries)
        self._entries.clear()
        return entries

    def remove_if(self, predicate: Callable[[QueueEntry], bool]) -> list[QueueEntry]:
        """Remove entries matching predicate; returns them in queue order."""
        kept: deque[QueueEntry] = deque()
        removed: list[QueueEntry] = []
        for entry in self._entries:
            (removed if predicate(entry) else kept).append(entry)
        self._entries = kept
        return removed

    @property
    def evicted_count(self) -> int:
        return self._evicted_count

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
