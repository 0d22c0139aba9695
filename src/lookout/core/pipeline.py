# src/lookout/core/pipeline.py
"""EventPipeline: raw capture input to finalized Event.

Steps (in order, each a hard contract):
1. Normalize raw input (exception, exc_info tuple, message, Event or wire
   mapping) into an Event. Unusable input is counted as
   ``internal_sdk_error`` and raises MalformedInputError.
2. Merge scope data and client defaults; explicit event values win.
3. Emit ``preprocess_event``.
4. Run client processors, then scope processors, in registration order.
   A processor returning None drops the event (counted once as
   ``event_processor``). A raising processor is treated as no mutation.
5. Run before_send / before_send_transaction (None drops, counted as
   ``before_send``).
6. Emit ``before_send_event``, re-normalize, and return the Event.

The pipeline never performs I/O and never blocks.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from lookout.contracts.enums import DataCategory, DropReason, SeverityLevel
from lookout.contracts.errors import MalformedInputError, ProcessorDropped
from lookout.contracts.events import Event, EventHint, Mechanism
from lookout.core.hooks import HookName, HookRegistry, listener_name
from lookout.core.normalize import exceptions_from_error, normalize

if TYPE_CHECKING:
    from lookout.core.client_reports import DropRecorder
    from lookout.core.scope import EventProcessor, Scope

logger = structlog.get_logger(__name__)

BeforeSend = Callable[[Event, EventHint], Event | None]


def _raw_category(raw: Any) -> DataCategory:
    if isinstance(raw, Event):
        return raw.data_category
    if isinstance(raw, Mapping) and raw.get("type") == "transaction":
        return DataCategory.TRANSACTION
    return DataCategory.ERROR


class EventPipeline:
    """Turns raw capture input into finalized, serializable events.

    Example:
        >>> pipeline = EventPipeline(hooks, recorder, environment="staging")
        >>> event = pipeline.process(error, EventHint(), scope)
        >>> event is None  # dropped by a processor
        False
    """

    def __init__(
        self,
        hooks: HookRegistry,
        recorder: DropRecorder,
        *,
        normalize_depth: int = 3,
        environment: str | None = None,
        release: str | None = None,
        server_name: str | None = None,
        sdk: Mapping[str, Any] | None = None,
        before_send: BeforeSend | None = None,
        before_send_transaction: BeforeSend | None = None,
    ) -> None:
        self._hooks = hooks
        self._recorder = recorder
        self._normalize_depth = normalize_depth
        self._environment = environment
        self._release = release
        self._server_name = server_name
        self._sdk = dict(sdk or {})
        self._before_send = before_send
        self._before_send_transaction = before_send_transaction
        self._processors: list[EventProcessor] = []
        self._lock = threading.Lock()

    def add_processor(self, processor: EventProcessor) -> None:
        """Register a client-wide processor (runs before scope processors)."""
        if not callable(processor):
            raise TypeError(f"Event processor must be callable, got {type(processor).__name__}")
        with self._lock:
            self._processors.append(processor)

    @property
    def processors(self) -> list[EventProcessor]:
        with self._lock:
            return list(self._processors)

    def process(
        self,
        raw: Any,
        hint: EventHint | None,
        scope: Scope | None,
        *,
        level: SeverityLevel | None = None,
        event_id: str | None = None,
    ) -> Event | None:
        """Run raw input through the pipeline.

        Args:
            raw: Exception, exc_info tuple, message string, Event or mapping
            hint: Capture hint (a default hint is used when None)
            scope: Scope to merge; None merges nothing
            level: Severity for message events
            event_id: Id to assign; the caller has already returned it

        Returns:
            The finalized Event, or None if a processor or before_send
            callback dropped it.

        Raises:
            MalformedInputError: If the input cannot be normalized.
        """
        hint = hint if hint is not None else EventHint()
        try:
            event = self._to_event(raw, hint, level)
        except MalformedInputError as e:
            self._recorder.record(DropReason.INTERNAL_SDK_ERROR, _raw_category(raw))
            logger.warning("Malformed capture input dropped", input_type=type(raw).__name__, error=str(e))
            raise

        if event_id is not None:
            event.event_id = event_id
        elif hint.event_id is not None:
            event.event_id = hint.event_id
        hint.event_id = event.event_id

        if scope is not None:
            scope.apply_to_event(event)
        self._apply_defaults(event)

        self._hooks.emit(HookName.PREPROCESS_EVENT, event, hint)

        processors = self.processors
        if scope is not None:
            processors.extend(scope.event_processors)
        for processor in processors:
            result = self._run_processor(processor, event, hint)
            if result is None:
                dropped = ProcessorDropped(listener_name(processor))
                self._recorder.record(dropped.reason, event.data_category)
                logger.debug("Event dropped by processor", processor=dropped.processor, event_id=event.event_id)
                return None
            event = result

        callback = self._before_send_transaction if event.is_transaction else self._before_send
        if callback is not None:
            result = self._run_processor(callback, event, hint)
            if result is None:
                self._recorder.record(DropReason.BEFORE_SEND, event.data_category)
                logger.debug("Event dropped by before_send", callback=listener_name(callback), event_id=event.event_id)
                return None
            event = result

        self._hooks.emit(HookName.BEFORE_SEND_EVENT, event, hint)

        try:
            self._finalize(event)
        except MalformedInputError as e:
            self._recorder.record(DropReason.INTERNAL_SDK_ERROR, event.data_category)
            logger.warning("Event could not be serialized", event_id=event.event_id, error=str(e))
            raise
        return event

    def _to_event(self, raw: Any, hint: EventHint, level: SeverityLevel | None) -> Event:
        if isinstance(raw, Event):
            event = raw
        elif isinstance(raw, str):
            event = Event(message=raw, level=level or SeverityLevel.INFO)
        elif isinstance(raw, Mapping):
            event = Event.from_mapping(raw)
        elif isinstance(raw, BaseException | tuple):
            mechanism = hint.mechanism or Mechanism()
            event = Event(exception=exceptions_from_error(raw, mechanism), level=level or SeverityLevel.ERROR)
            if hint.original_exception is None:
                hint.original_exception = raw if isinstance(raw, BaseException) else raw[1]
        else:
            raise MalformedInputError(f"Cannot build an event from {type(raw).__name__}")

        self._normalize_fields(event)
        return event

    def _normalize_fields(self, event: Event) -> None:
        depth = self._normalize_depth
        event.extra = normalize(event.extra, depth + 1)
        event.user = normalize(event.user, depth + 1)
        # contexts are one level deeper than extra: name -> context mapping
        event.contexts = normalize(event.contexts, depth + 1)
        event.tags = {str(k): str(v) for k, v in event.tags.items()}
        for breadcrumb in event.breadcrumbs:
            breadcrumb.data = normalize(breadcrumb.data, depth + 1)
        if event.request is not None:
            event.request.data = normalize(event.request.data, depth)
        for span in event.spans:
            if "data" in span:
                span["data"] = normalize(span["data"], depth + 1)

    def _apply_defaults(self, event: Event) -> None:
        if event.environment is None:
            event.environment = self._environment
        if event.release is None:
            event.release = self._release
        if event.server_name is None:
            event.server_name = self._server_name
        if not event.sdk and self._sdk:
            event.sdk = dict(self._sdk)
        if event.level is None and not event.is_transaction:
            event.level = SeverityLevel.ERROR

    def _run_processor(self, processor: Callable[[Event, EventHint], Any], event: Event, hint: EventHint) -> Event | None:
        """Call a processor; failures and wrong return types keep the event unchanged."""
        try:
            result = processor(event, hint)
        except Exception as e:
            logger.warning(
                "Event processor failed",
                processor=listener_name(processor),
                event_id=event.event_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return event
        if result is None or isinstance(result, Event):
            return result
        logger.warning(
            "Event processor returned a non-event, ignoring",
            processor=listener_name(processor),
            returned=type(result).__name__,
        )
        return event

    def _finalize(self, event: Event) -> None:
        try:
            self._normalize_fields(event)
            json.dumps(event.to_dict(), allow_nan=False)
        except (TypeError, ValueError, AttributeError) as e:
            raise MalformedInputError(f"Event is not serializable: {e}") from e
