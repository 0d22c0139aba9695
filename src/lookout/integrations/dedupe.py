# src/lookout/integrations/dedupe.py
"""Drop an error event identical to the one captured just before it.

Frameworks often report the same exception twice (once from a handler
wrapper, once from a top-level hook). Two consecutive events are
duplicates when:
- they carry the same original exception object, or
- their exception chains match on type, value and frames, or
- they are message events with the same message and fingerprint.

Transactions are never deduplicated.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import structlog

from lookout.contracts.events import Event, EventHint

if TYPE_CHECKING:
    from lookout.client import Client

logger = structlog.get_logger(__name__)


def _frames_key(event: Event) -> list[tuple[str, str, int | None]]:
    if event.exception is None:
        return []
    return [(f.filename, f.function, f.lineno) for value in event.exception.values for f in value.frames]


def _same_exception(current: Event, previous: Event) -> bool:
    if current.exception is None or previous.exception is None:
        return False
    current_values = [(v.type, v.value) for v in current.exception.values]
    previous_values = [(v.type, v.value) for v in previous.exception.values]
    return (
        current_values == previous_values
        and _frames_key(current) == _frames_key(previous)
        and current.fingerprint == previous.fingerprint
    )


def _same_message(current: Event, previous: Event) -> bool:
    if current.exception is not None or previous.exception is not None:
        return False
    if current.message is None or current.message != previous.message:
        return False
    return current.fingerprint == previous.fingerprint


class DedupeIntegration:
    """Event processor that drops back-to-back duplicate error events.

    Example:
        >>> client = Client(settings, integrations=[DedupeIntegration()])
    """

    _name = "dedupe"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._previous_event: Event | None = None
        self._previous_exception: BaseException | None = None

    @property
    def name(self) -> str:
        return self._name

    def setup(self, client: Client) -> None:
        client.add_event_processor(self.process_event)

    def process_event(self, event: Event, hint: EventHint) -> Event | None:
        if event.is_transaction:
            return event

        with self._lock:
            previous = self._previous_event
            previous_exception = self._previous_exception
            original = hint.original_exception

            duplicate = previous is not None and (
                (original is not None and original is previous_exception)
                or _same_exception(event, previous)
                or _same_message(event, previous)
            )
            if duplicate:
                logger.debug("Duplicate event dropped", event_id=event.event_id)
                return None

            self._previous_event = event
            self._previous_exception = original
            return event
