# src/lookout/core/scope.py
"""Ambient contextual data attached to captured signals.

A Scope holds breadcrumbs, tags, user, extra data, contexts, the active
span and the trace propagation context. Framework adapters fork a scope
per request; the child starts as a snapshot of the parent and the two
never affect each other afterwards.

Merge precedence:
    apply_to_event() never overwrites values already present on the event.
    Explicit capture input always wins over ambient scope data.

Thread Safety:
    Every public operation holds the scope's RLock, so operations on one
    scope never interleave partially. Forked scopes share no mutable state
    and need no coordination.
"""

from __future__ import annotations

import copy
import threading
from collections import deque
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from lookout.contracts.events import Breadcrumb, Event, EventHint, RequestInfo
from lookout.core.hooks import DROP, HookName, HookRegistry
from lookout.core.tracing import PropagationContext

if TYPE_CHECKING:
    from lookout.contracts.enums import SeverityLevel
    from lookout.contracts.health import Session
    from lookout.core.tracing import Span

logger = structlog.get_logger(__name__)

DEFAULT_MAX_BREADCRUMBS = 100

EventProcessor = Callable[[Event, EventHint], Event | None]
BeforeBreadcrumb = Callable[[Breadcrumb, Mapping[str, Any] | None], Breadcrumb | None]


class Scope:
    """Mutable ambient state for captures.

    Example:
        >>> request_scope = client.scope.fork()
        >>> request_scope.set_tag("route", "/users/:id")
        >>> client.capture_exception(error, scope=request_scope)
    """

    def __init__(
        self,
        *,
        hooks: HookRegistry | None = None,
        max_breadcrumbs: int = DEFAULT_MAX_BREADCRUMBS,
        before_breadcrumb: BeforeBreadcrumb | None = None,
    ) -> None:
        """Initialize an empty scope.

        Args:
            hooks: Registry for breadcrumb hooks (None: no hooks fire)
            max_breadcrumbs: Capacity of the breadcrumb buffer; 0 disables
                breadcrumbs
            before_breadcrumb: Optional callback that may edit a breadcrumb
                or return None to discard it
        """
        if max_breadcrumbs < 0:
            raise ValueError(f"max_breadcrumbs must be >= 0, got {max_breadcrumbs}")
        self._lock = threading.RLock()
        self._hooks = hooks
        self._before_breadcrumb = before_breadcrumb
        self._max_breadcrumbs = max_breadcrumbs
        self._breadcrumbs: deque[Breadcrumb] = deque(maxlen=max_breadcrumbs)
        self._tags: dict[str, str] = {}
        self._user: dict[str, Any] = {}
        self._extra: dict[str, Any] = {}
        self._contexts: dict[str, dict[str, Any]] = {}
        self._level: SeverityLevel | None = None
        self._transaction_name: str | None = None
        self._fingerprint: list[str] = []
        self._request: RequestInfo | None = None
        self._span: Span | None = None
        self._session: Session | None = None
        self._propagation_context = PropagationContext()
        self._event_processors: list[EventProcessor] = []

    def fork(self) -> Scope:
        """Return an independent child scope initialized from this one.

        The span, session and propagation context are carried over by
        reference (they are shared trace/session identities, not scope
        data); everything else is copied.
        """
        with self._lock:
            child = Scope(
                hooks=self._hooks,
                max_breadcrumbs=self._max_breadcrumbs,
                before_breadcrumb=self._before_breadcrumb,
            )
            child._breadcrumbs.extend(copy.copy(b) for b in self._breadcrumbs)
            child._tags = dict(self._tags)
            child._user = dict(self._user)
            child._extra = dict(self._extra)
            child._contexts = {k: dict(v) for k, v in self._contexts.items()}
            child._level = self._level
            child._transaction_name = self._transaction_name
            child._fingerprint = list(self._fingerprint)
            child._request = copy.deepcopy(self._request)
            child._span = self._span
            child._session = self._session
            child._propagation_context = self._propagation_context
            child._event_processors = list(self._event_processors)
            return child

    # =========================================================================
    # Breadcrumbs
    # =========================================================================

    def add_breadcrumb(self, breadcrumb: Breadcrumb, hint: Mapping[str, Any] | None = None) -> bool:
        """Record a breadcrumb.

        preprocess_add_breadcrumb fires first, then the before_breadcrumb
        callback, then before_add_breadcrumb. Returning None from the
        callback or DROP from a before_add_breadcrumb listener discards
        the breadcrumb.

        Returns:
            True if the breadcrumb was stored.
        """
        with self._lock:
            if self._max_breadcrumbs == 0:
                return False

            if self._hooks is not None:
                self._hooks.emit(HookName.PREPROCESS_ADD_BREADCRUMB, breadcrumb, hint)

            if self._before_breadcrumb is not None:
                try:
                    result = self._before_breadcrumb(breadcrumb, hint)
                except Exception as e:
                    logger.warning("before_breadcrumb callback failed", error=str(e))
                    result = breadcrumb
                if result is None:
                    logger.debug("Breadcrumb dropped", by="before_breadcrumb")
                    return False
                breadcrumb = result

            if self._hooks is not None:
                results = self._hooks.emit(HookName.BEFORE_ADD_BREADCRUMB, breadcrumb, hint)
                if any(r is DROP for r in results):
                    logger.debug("Breadcrumb dropped", by="before_add_breadcrumb")
                    return False

            self._breadcrumbs.append(breadcrumb)
            return True

    def clear_breadcrumbs(self) -> None:
        with self._lock:
            self._breadcrumbs.clear()

    @property
    def breadcrumbs(self) -> list[Breadcrumb]:
        with self._lock:
            return list(self._breadcrumbs)

    # =========================================================================
    # Simple setters (last write wins)
    # =========================================================================

    def set_tag(self, key: str, value: Any) -> None:
        with self._lock:
            self._tags[str(key)] = str(value)

    def set_tags(self, tags: Mapping[str, Any]) -> None:
        with self._lock:
            self._tags.update({str(k): str(v) for k, v in tags.items()})

    def remove_tag(self, key: str) -> None:
        with self._lock:
            self._tags.pop(key, None)

    def set_user(self, user: Mapping[str, Any] | None) -> None:
        with self._lock:
            self._user = dict(user or {})

    def set_extra(self, key: str, value: Any) -> None:
        with self._lock:
            self._extra[key] = value

    def set_context(self, key: str, context: Mapping[str, Any] | None) -> None:
        with self._lock:
            if context is None:
                self._contexts.pop(key, None)
            else:
                self._contexts[key] = dict(context)

    def set_level(self, level: SeverityLevel | None) -> None:
        with self._lock:
            self._level = level

    def set_transaction_name(self, name: str | None) -> None:
        with self._lock:
            self._transaction_name = name

    def set_fingerprint(self, fingerprint: list[str] | None) -> None:
        with self._lock:
            self._fingerprint = list(fingerprint or [])

    def set_request(self, request: RequestInfo | None) -> None:
        with self._lock:
            self._request = request

    def set_span(self, span: Span | None) -> None:
        with self._lock:
            self._span = span

    def set_session(self, session: Session | None) -> None:
        with self._lock:
            self._session = session

    def set_propagation_context(self, context: PropagationContext) -> None:
        with self._lock:
            self._propagation_context = context

    def add_event_processor(self, processor: EventProcessor) -> None:
        """Register a processor that runs only for events captured with this scope."""
        with self._lock:
            self._event_processors.append(processor)

    def clear(self) -> None:
        """Reset all scope data; hooks and capacity are kept."""
        with self._lock:
            self._breadcrumbs.clear()
            self._tags = {}
            self._user = {}
            self._extra = {}
            self._contexts = {}
            self._level = None
            self._transaction_name = None
            self._fingerprint = []
            self._request = None
            self._span = None
            self._session = None
            self._propagation_context = PropagationContext()
            self._event_processors = []

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def tags(self) -> dict[str, str]:
        with self._lock:
            return dict(self._tags)

    @property
    def user(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._user)

    @property
    def extra(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._extra)

    @property
    def contexts(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {k: dict(v) for k, v in self._contexts.items()}

    @property
    def level(self) -> SeverityLevel | None:
        return self._level

    @property
    def transaction_name(self) -> str | None:
        return self._transaction_name

    @property
    def request(self) -> RequestInfo | None:
        return self._request

    @property
    def span(self) -> Span | None:
        return self._span

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def propagation_context(self) -> PropagationContext:
        return self._propagation_context

    @property
    def event_processors(self) -> list[EventProcessor]:
        with self._lock:
            return list(self._event_processors)

    @property
    def max_breadcrumbs(self) -> int:
        return self._max_breadcrumbs

    def trace_context(self) -> dict[str, Any]:
        """Trace context of the active span, or of the propagation context."""
        with self._lock:
            if self._span is not None:
                return self._span.to_trace_context()
            return self._propagation_context.to_trace_context()

    # =========================================================================
    # Event merge
    # =========================================================================

    def apply_to_event(self, event: Event) -> Event:
        """Merge scope data into event without overwriting explicit values."""
        with self._lock:
            event.tags = {**self._tags, **event.tags}
            event.extra = {**self._extra, **event.extra}
            event.user = {**self._user, **event.user}
            for key, context in self._contexts.items():
                event.contexts.setdefault(key, dict(context))
            if "trace" not in event.contexts:
                event.contexts["trace"] = self.trace_context()

            if event.level is None and self._level is not None:
                event.level = self._level
            if event.transaction is None and self._transaction_name is not None:
                event.transaction = self._transaction_name
            if not event.fingerprint and self._fingerprint:
                event.fingerprint = list(self._fingerprint)
            if event.request is None and self._request is not None:
                event.request = copy.deepcopy(self._request)

            if self._breadcrumbs and self._max_breadcrumbs:
                merged = [*event.breadcrumbs, *self._breadcrumbs]
                event.breadcrumbs = merged[-self._max_breadcrumbs :]
            return event
