# src/lookout/core/hooks.py
"""Typed, multi-listener synchronous hook registry.

Every lifecycle point of the client has a name in the closed HookName
enumeration and a fixed argument signature. Listeners are kept in a
mapping from hook name to an ordered list and are called synchronously
in registration order.

Failure isolation:
    A listener that raises is logged and skipped; emission continues with
    the next listener. One faulty extension must not break the others, and
    never the host application.

Return values:
    Listener return values are ignored except for the two breadcrumb hooks,
    where a listener may return ``DROP`` to discard the breadcrumb. The
    ``before_sampling`` hook instead passes an explicit mutable
    SamplingDecision that listeners overwrite (last writer wins).

Thread Safety:
    Registration takes a lock. emit() iterates over a snapshot of the
    listener list, so it is safe to emit from transport worker threads
    (after_send_event) while the capture thread registers listeners.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final, Literal, overload

import structlog

from lookout.contracts.errors import HookArgumentError, UnknownHookError

if TYPE_CHECKING:
    from lookout.contracts.events import Breadcrumb, Event, EventHint
    from lookout.core.envelope import Envelope
    from lookout.core.tracing import DynamicSamplingContext, Span
    from lookout.transport.manager import DeliveryResult

logger = structlog.get_logger(__name__)


class HookName(StrEnum):
    """Closed set of lifecycle hook points."""

    PREPROCESS_ADD_BREADCRUMB = "preprocess_add_breadcrumb"
    BEFORE_ADD_BREADCRUMB = "before_add_breadcrumb"
    BEFORE_SAMPLING = "before_sampling"
    SPAN_START = "span_start"
    SPAN_END = "span_end"
    CREATE_DSC = "create_dsc"
    PREPROCESS_EVENT = "preprocess_event"
    BEFORE_SEND_EVENT = "before_send_event"
    AFTER_SEND_EVENT = "after_send_event"
    BEFORE_ENVELOPE = "before_envelope"
    FLUSH = "flush"
    CLOSE = "close"


# Argument names per hook. Trailing names in parentheses are optional.
HOOK_SIGNATURES: Final[Mapping[HookName, tuple[tuple[str, ...], tuple[str, ...]]]] = {
    HookName.PREPROCESS_ADD_BREADCRUMB: (("breadcrumb",), ("hint",)),
    HookName.BEFORE_ADD_BREADCRUMB: (("breadcrumb",), ("hint",)),
    HookName.BEFORE_SAMPLING: (("sampling_data", "sampling_decision"), ()),
    HookName.SPAN_START: (("span",), ()),
    HookName.SPAN_END: (("span",), ()),
    HookName.CREATE_DSC: (("dsc",), ("root_span",)),
    HookName.PREPROCESS_EVENT: (("event",), ("hint",)),
    HookName.BEFORE_SEND_EVENT: (("event",), ("hint",)),
    HookName.AFTER_SEND_EVENT: (("event", "result"), ()),
    HookName.BEFORE_ENVELOPE: (("envelope",), ()),
    HookName.FLUSH: ((), ()),
    HookName.CLOSE: ((), ()),
}


class _DropSentinel:
    """Marker returned by a breadcrumb listener to discard the breadcrumb."""

    _instance: _DropSentinel | None = None

    def __new__(cls) -> _DropSentinel:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DROP"


DROP: Final = _DropSentinel()


@dataclass(frozen=True, slots=True)
class SamplingData:
    """Inputs to a sampling decision, as seen by before_sampling listeners."""

    span_attributes: Mapping[str, Any]
    span_name: str
    parent_sampled: bool | None = None
    parent_context: Mapping[str, Any] | None = None


@dataclass(slots=True)
class SamplingDecision:
    """In/out record for before_sampling.

    Seeded with the candidate decision. Each listener may overwrite
    ``decision``; whatever the last listener leaves is the outcome.
    """

    decision: bool


def resolve_hook(hook: HookName | str) -> HookName:
    """Map a hook name to its enum member.

    Raises:
        UnknownHookError: If the name is not a known hook.
    """
    try:
        return HookName(hook)
    except ValueError:
        valid = ", ".join(h.value for h in HookName)
        raise UnknownHookError(f"Unknown hook {hook!r}. Valid hooks: {valid}") from None


def listener_name(listener: Callable[..., Any]) -> str:
    """Display name for a listener or processor in logs."""
    return getattr(listener, "__qualname__", None) or type(listener).__name__


class HookRegistry:
    """Mapping from hook name to an ordered list of listeners.

    Example:
        >>> hooks = HookRegistry()
        >>> hooks.on("span_start", lambda span: print(span.name))
        >>> hooks.emit(HookName.SPAN_START, span)
    """

    def __init__(self) -> None:
        self._listeners: dict[HookName, list[Callable[..., Any]]] = {name: [] for name in HookName}
        self._lock = threading.Lock()
        self._failures: dict[str, int] = {}

    @overload
    def on(
        self,
        hook: Literal[HookName.PREPROCESS_ADD_BREADCRUMB, HookName.BEFORE_ADD_BREADCRUMB],
        listener: Callable[[Breadcrumb, Mapping[str, Any] | None], Any],
    ) -> None: ...

    @overload
    def on(
        self,
        hook: Literal[HookName.BEFORE_SAMPLING],
        listener: Callable[[SamplingData, SamplingDecision], None],
    ) -> None: ...

    @overload
    def on(self, hook: Literal[HookName.SPAN_START, HookName.SPAN_END], listener: Callable[[Span], None]) -> None: ...

    @overload
    def on(
        self,
        hook: Literal[HookName.CREATE_DSC],
        listener: Callable[[DynamicSamplingContext, Span | None], None],
    ) -> None: ...

    @overload
    def on(
        self,
        hook: Literal[HookName.PREPROCESS_EVENT, HookName.BEFORE_SEND_EVENT],
        listener: Callable[[Event, EventHint | None], None],
    ) -> None: ...

    @overload
    def on(
        self,
        hook: Literal[HookName.AFTER_SEND_EVENT],
        listener: Callable[[Event, DeliveryResult], None],
    ) -> None: ...

    @overload
    def on(self, hook: Literal[HookName.BEFORE_ENVELOPE], listener: Callable[[Envelope], None]) -> None: ...

    @overload
    def on(self, hook: Literal[HookName.FLUSH, HookName.CLOSE], listener: Callable[[], None]) -> None: ...

    @overload
    def on(self, hook: str, listener: Callable[..., Any]) -> None: ...

    def on(self, hook: HookName | str, listener: Callable[..., Any]) -> None:
        """Register a listener for a hook.

        Raises:
            UnknownHookError: If hook is not a HookName.
            TypeError: If listener is not callable.
        """
        name = resolve_hook(hook)
        if not callable(listener):
            raise TypeError(f"Hook listener for {name.value} must be callable, got {type(listener).__name__}")
        with self._lock:
            self._listeners[name].append(listener)

    def emit(self, hook: HookName | str, *args: Any) -> tuple[Any, ...]:
        """Invoke every listener for a hook, in registration order.

        Args:
            hook: Hook to emit
            *args: Arguments matching the hook's signature

        Returns:
            Return values of the listeners that completed, in order.

        Raises:
            UnknownHookError: If hook is not a HookName.
            HookArgumentError: If args do not match the hook signature.
        """
        name = resolve_hook(hook)
        required, optional = HOOK_SIGNATURES[name]
        if not len(required) <= len(args) <= len(required) + len(optional):
            raise HookArgumentError(
                f"Hook {name.value} takes ({', '.join([*required, *(f'{o}?' for o in optional)])}), got {len(args)} arguments"
            )

        with self._lock:
            listeners = list(self._listeners[name])

        results: list[Any] = []
        for listener in listeners:
            try:
                results.append(listener(*args))
            except Exception as e:
                key = f"{name.value}:{listener_name(listener)}"
                with self._lock:
                    self._failures[key] = self._failures.get(key, 0) + 1
                logger.warning(
                    "Hook listener failed",
                    hook=name.value,
                    listener=listener_name(listener),
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return tuple(results)

    def listeners(self, hook: HookName | str) -> tuple[Callable[..., Any], ...]:
        """Registered listeners for a hook, in registration order."""
        name = resolve_hook(hook)
        with self._lock:
            return tuple(self._listeners[name])

    @property
    def failure_counts(self) -> dict[str, int]:
        """Listener failure counts keyed by ``hook:listener``."""
        with self._lock:
            return dict(self._failures)
