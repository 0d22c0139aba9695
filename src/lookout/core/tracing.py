# src/lookout/core/tracing.py
"""Spans, trace propagation and the dynamic sampling context.

A Span is a timed unit of traced work. The first span of a trace in this
process is its segment (root); children register with the segment when
they finish, and the segment becomes a transaction event when it ends
sampled. The sampling decision is fixed at construction.

Propagation:
    ``sentry-trace: {trace_id}-{span_id}-{sampled}`` carries the trace
    identity and upstream decision; ``baggage`` carries the frozen
    DynamicSamplingContext (``sentry-*`` entries) of the trace root.
"""

from __future__ import annotations

import re
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, unquote

from lookout.contracts.enums import SpanStatus

if TYPE_CHECKING:
    from lookout.core.scope import Scope

_SENTRY_TRACE_RE = re.compile(r"^[ \t]*([0-9a-f]{32})?-?([0-9a-f]{16})?-?([01])?[ \t]*$")
_BAGGAGE_PREFIX = "sentry-"


def new_trace_id() -> str:
    return uuid.uuid4().hex


def new_span_id() -> str:
    return uuid.uuid4().hex[16:]


def parse_sentry_trace(header: str | None) -> tuple[str, str | None, bool | None] | None:
    """Parse a ``sentry-trace`` header.

    Returns:
        (trace_id, parent_span_id, sampled) or None if the header is
        missing or malformed.
    """
    if not header:
        return None
    match = _SENTRY_TRACE_RE.match(header)
    if match is None or match.group(1) is None:
        return None
    trace_id, span_id, sampled = match.groups()
    return trace_id, span_id, None if sampled is None else sampled == "1"


@dataclass(frozen=True, slots=True)
class DynamicSamplingContext:
    """Trace-level sampling metadata, created once per trace root."""

    trace_id: str
    public_key: str | None = None
    sample_rate: float | None = None
    sampled: bool | None = None
    release: str | None = None
    environment: str | None = None
    transaction: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {
            "trace_id": self.trace_id,
            "public_key": self.public_key,
            "sample_rate": None if self.sample_rate is None else repr(self.sample_rate),
            "sampled": None if self.sampled is None else ("true" if self.sampled else "false"),
            "release": self.release,
            "environment": self.environment,
            "transaction": self.transaction,
        }
        return {k: v for k, v in data.items() if v is not None}

    def to_baggage(self) -> str:
        return ",".join(f"{_BAGGAGE_PREFIX}{k}={quote(v)}" for k, v in self.to_dict().items())

    @classmethod
    def from_baggage(cls, header: str | None) -> DynamicSamplingContext | None:
        """Parse ``sentry-*`` entries of a baggage header; None if there are none."""
        if not header:
            return None
        entries: dict[str, str] = {}
        for member in header.split(","):
            key, sep, value = member.strip().partition("=")
            if sep and key.startswith(_BAGGAGE_PREFIX):
                entries[key[len(_BAGGAGE_PREFIX) :]] = unquote(value.split(";", 1)[0].strip())
        if "trace_id" not in entries:
            return None
        try:
            sample_rate = float(entries["sample_rate"]) if "sample_rate" in entries else None
        except ValueError:
            sample_rate = None
        sampled = entries.get("sampled")
        return cls(
            trace_id=entries["trace_id"],
            public_key=entries.get("public_key"),
            sample_rate=sample_rate,
            sampled=None if sampled is None else sampled == "true",
            release=entries.get("release"),
            environment=entries.get("environment"),
            transaction=entries.get("transaction"),
        )


@dataclass(frozen=True, slots=True)
class PropagationContext:
    """Trace identity of a scope when no span is active."""

    trace_id: str = field(default_factory=new_trace_id)
    span_id: str = field(default_factory=new_span_id)
    parent_span_id: str | None = None
    sampled: bool | None = None
    dsc: DynamicSamplingContext | None = None

    @classmethod
    def from_headers(cls, sentry_trace: str | None, baggage: str | None = None) -> PropagationContext:
        """Continue an incoming trace; starts a fresh one if the header is unusable."""
        parsed = parse_sentry_trace(sentry_trace)
        if parsed is None:
            return cls()
        trace_id, parent_span_id, sampled = parsed
        dsc = DynamicSamplingContext.from_baggage(baggage)
        if dsc is not None and dsc.trace_id != trace_id:
            dsc = None
        return cls(trace_id=trace_id, parent_span_id=parent_span_id, sampled=sampled, dsc=dsc)

    def to_trace_context(self) -> dict[str, Any]:
        context: dict[str, Any] = {"trace_id": self.trace_id, "span_id": self.span_id}
        if self.parent_span_id is not None:
            context["parent_span_id"] = self.parent_span_id
        return context


class Span:
    """A timed unit of traced work.

    Use as a context manager to make the span the scope's active span for
    the duration of the block:

        >>> with client.start_span("GET /users", op="http.server", scope=scope) as span:
        ...     span.set_attribute("http.method", "GET")
    """

    def __init__(
        self,
        name: str,
        *,
        trace_id: str,
        sampled: bool,
        span_id: str | None = None,
        parent_span_id: str | None = None,
        op: str | None = None,
        attributes: Mapping[str, Any] | None = None,
        segment: Span | None = None,
        sample_rate: float | None = None,
        on_end: Callable[[Span], None] | None = None,
        scope: Scope | None = None,
        start_timestamp: float | None = None,
    ) -> None:
        self.name = name
        self.op = op
        self.trace_id = trace_id
        self.span_id = span_id or new_span_id()
        self.parent_span_id = parent_span_id
        self.attributes: dict[str, Any] = dict(attributes or {})
        self.status: SpanStatus | None = None
        self.start_timestamp = start_timestamp if start_timestamp is not None else time.time()
        self.end_timestamp: float | None = None
        self.sample_rate = sample_rate
        self._sampled = sampled
        self._segment = segment
        self._on_end = on_end
        self._scope = scope
        self._previous_span: Span | None = None
        self._finished_children: list[Span] = []
        self._lock = threading.Lock()
        self.dsc: DynamicSamplingContext | None = None

    @property
    def sampled(self) -> bool:
        """Sampling decision, fixed at creation."""
        return self._sampled

    @property
    def segment(self) -> Span:
        """Root span of this trace in this process."""
        return self._segment or self

    @property
    def is_segment(self) -> bool:
        return self._segment is None

    @property
    def is_finished(self) -> bool:
        return self.end_timestamp is not None

    @property
    def finished_children(self) -> list[Span]:
        with self._lock:
            return list(self._finished_children)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def set_status(self, status: SpanStatus) -> None:
        self.status = SpanStatus(status)

    def end(self, end_timestamp: float | None = None) -> None:
        """Finish the span. Ending twice is a no-op."""
        with self._lock:
            if self.end_timestamp is not None:
                return
            self.end_timestamp = end_timestamp if end_timestamp is not None else time.time()
        if not self.is_segment:
            self.segment._add_finished_child(self)
        if self._on_end is not None:
            self._on_end(self)

    def _add_finished_child(self, child: Span) -> None:
        with self._lock:
            if self.end_timestamp is None:
                self._finished_children.append(child)

    def to_traceparent(self) -> str:
        """Value for an outgoing ``sentry-trace`` header."""
        return f"{self.trace_id}-{self.span_id}-{1 if self._sampled else 0}"

    def to_trace_context(self) -> dict[str, Any]:
        context: dict[str, Any] = {"trace_id": self.trace_id, "span_id": self.span_id}
        if self.parent_span_id is not None:
            context["parent_span_id"] = self.parent_span_id
        if self.op is not None:
            context["op"] = self.op
        if self.status is not None:
            context["status"] = self.status.value
        return context

    def to_dict(self) -> dict[str, Any]:
        """Child span entry of a transaction payload."""
        data = self.to_trace_context()
        data["description"] = self.name
        data["start_timestamp"] = self.start_timestamp
        data["timestamp"] = self.end_timestamp
        if self.attributes:
            data["data"] = dict(self.attributes)
        return data

    def __enter__(self) -> Span:
        if self._scope is not None:
            self._previous_span = self._scope.span
            self._scope.set_span(self)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None and self.status is None:
            self.set_status(SpanStatus.INTERNAL_ERROR)
        elif self.status is None:
            self.set_status(SpanStatus.OK)
        self.end()
        if self._scope is not None:
            self._scope.set_span(self._previous_span)

    def __repr__(self) -> str:
        return f"Span(name={self.name!r}, trace_id={self.trace_id}, span_id={self.span_id}, sampled={self._sampled})"
