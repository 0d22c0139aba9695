# src/lookout/client.py
"""Client: the capture API and the wiring of the dispatch engine.

A Client owns one HookRegistry, one EventPipeline, one SamplingEngine,
one EnvelopeBuilder and (when a DSN or backend is configured) one
TransportManager. There is no global client: framework adapters hold a
Client handle and fork its root scope per request.

Capture contract:
    capture_exception / capture_message / capture_event / capture_check_in
    return an id immediately. Processing is synchronous and never blocks
    on I/O; delivery happens on transport worker threads. Nothing that
    fails during processing or delivery is raised to the caller: it is
    logged and counted as a dropped event. The only exception that
    reaches the caller is ClientClosedError after close().

Example:
    >>> client = Client(ClientSettings(dsn="https://key@o1.ingest.example.com/42", traces_sample_rate=0.2))
    >>> scope = client.new_scope()
    >>> scope.set_tag("route", "/checkout")
    >>> with client.start_span("POST /checkout", op="http.server", scope=scope):
    ...     try:
    ...         checkout()
    ...     except Exception as e:
    ...         client.capture_exception(e, scope=scope)
    >>> client.close(timeout=2.0)
"""

from __future__ import annotations

import dataclasses
import random
import threading
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import Future
from pathlib import Path
from types import TracebackType
from typing import Any

import structlog

from lookout.contracts.defaults import INTERNAL_DEFAULTS
from lookout.contracts.enums import DataCategory, DropReason, SeverityLevel
from lookout.contracts.errors import ClientClosedError, MalformedInputError
from lookout.contracts.events import Breadcrumb, Event, EventHint, Mechanism, new_event_id
from lookout.contracts.health import CheckIn, MonitorConfig, Session, SessionAggregates
from lookout.core.client_reports import DropRecorder
from lookout.core.clock import Clock
from lookout.core.config import ClientSettings, dump_settings, load_settings
from lookout.core.dsn import Dsn
from lookout.core.envelope import (
    Envelope,
    EnvelopeBuilder,
    EnvelopeItem,
    check_in_item,
    client_report_item,
    event_item,
    session_item,
    sessions_item,
)
from lookout.core.hooks import HookName, HookRegistry
from lookout.core.logging import configure_debug_logging
from lookout.core.normalize import current_exc_info
from lookout.core.pipeline import BeforeSend, EventPipeline
from lookout.core.sampling import SamplingEngine, TracesSampler
from lookout.core.scope import BeforeBreadcrumb, EventProcessor, Scope
from lookout.core.tracing import DynamicSamplingContext, PropagationContext, Span
from lookout.integrations.base import Integration
from lookout.transport.factory import create_transport_manager
from lookout.transport.manager import DeliveryResult, TransportManager
from lookout.transport.protocols import TransportProtocol

logger = structlog.get_logger(__name__)

_DSC_CACHE_SIZE = int(INTERNAL_DEFAULTS["tracing"]["dsc_cache_size"])


class Client:
    """Explicit client handle for capturing errors, messages and traces."""

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        transport: TransportProtocol | None = None,
        transport_plugins: Iterable[Any] = (),
        before_send: BeforeSend | None = None,
        before_send_transaction: BeforeSend | None = None,
        before_breadcrumb: BeforeBreadcrumb | None = None,
        traces_sampler: TracesSampler | None = None,
        integrations: Iterable[Integration] = (),
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Validated settings (default ClientSettings())
            transport: Configured backend to use instead of discovering
                ``settings.transport.backend``
            transport_plugins: Extra pluggy plugin objects providing
                ``lookout_get_transports``
            before_send: Last chance to edit or drop (return None) an error event
            before_send_transaction: Same, for transaction events
            before_breadcrumb: Edit or drop (return None) breadcrumbs
            traces_sampler: Per-trace sample rate function; overrides
                ``settings.traces_sample_rate``
            integrations: Integrations to set up immediately
            rng: Random source for sampling (tests pass a seeded one)
            clock: Clock for rate-limit cooldowns (tests pass a MockClock)

        Raises:
            DsnError: If settings.dsn is malformed
            TransportConfigurationError: If the transport backend cannot be
                discovered or configured
        """
        self._settings = settings or ClientSettings()
        if self._settings.debug:
            configure_debug_logging()
            logger.debug("Client settings resolved", settings=dump_settings(self._settings))

        self._dsn = Dsn.parse(self._settings.dsn) if self._settings.dsn else None
        self._sdk = {"name": INTERNAL_DEFAULTS["sdk"]["name"], "version": INTERNAL_DEFAULTS["sdk"]["version"]}
        self._rng = rng or random.Random()
        self._lock = threading.RLock()
        self._closed = False
        self._close_result: bool | None = None
        self._integrations: dict[str, Integration] = {}
        self._trace_dscs: dict[str, DynamicSamplingContext] = {}

        self._hooks = HookRegistry()
        self._recorder = DropRecorder()
        self._envelopes = EnvelopeBuilder(sdk=self._sdk, dsn=self._dsn)
        self._sampling = SamplingEngine(
            self._hooks,
            traces_sample_rate=self._settings.traces_sample_rate,
            traces_sampler=traces_sampler,
            rng=self._rng,
        )
        self._pipeline = EventPipeline(
            self._hooks,
            self._recorder,
            normalize_depth=self._settings.normalize_depth,
            environment=self._settings.environment,
            release=self._settings.release,
            server_name=self._settings.server_name,
            sdk=self._sdk,
            before_send=before_send,
            before_send_transaction=before_send_transaction,
        )
        self._scope = Scope(
            hooks=self._hooks,
            max_breadcrumbs=self._settings.max_breadcrumbs,
            before_breadcrumb=before_breadcrumb,
        )

        self._transport: TransportManager | None = None
        if transport is not None or self._dsn is not None:
            self._transport = create_transport_manager(
                self._settings.transport,
                recorder=self._recorder,
                dsn=self._settings.dsn,
                backend=transport,
                sdk_client=f"{self._sdk['name']}/{self._sdk['version']}",
                transport_plugins=transport_plugins,
                clock=clock,
            )
        else:
            logger.info("No DSN configured, events will not be sent")

        for integration in integrations:
            self.add_integration(integration)

    @classmethod
    def from_settings(cls, config_path: Path | None = None, **kwargs: Any) -> Client:
        """Create a client from a YAML file and LOOKOUT_* environment variables."""
        return cls(load_settings(config_path), **kwargs)

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def dsn(self) -> Dsn | None:
        return self._dsn

    @property
    def sdk_metadata(self) -> dict[str, Any]:
        return dict(self._sdk)

    @property
    def scope(self) -> Scope:
        """The client's root scope."""
        return self._scope

    @property
    def transport(self) -> TransportManager | None:
        return self._transport

    @property
    def drop_recorder(self) -> DropRecorder:
        return self._recorder

    @property
    def event_processors(self) -> list[EventProcessor]:
        return self._pipeline.processors

    @property
    def is_closed(self) -> bool:
        return self._closed

    def new_scope(self) -> Scope:
        """Fork the root scope, e.g. once per request."""
        return self._scope.fork()

    def _check_open(self) -> None:
        if self._closed:
            raise ClientClosedError("Client is closed")

    # =========================================================================
    # Hooks, processors, integrations
    # =========================================================================

    def on(self, hook: HookName | str, listener: Callable[..., Any]) -> None:
        """Register a lifecycle hook listener.

        Raises:
            UnknownHookError: If hook is not a known hook name.
        """
        self._hooks.on(hook, listener)

    def emit(self, hook: HookName | str, *args: Any) -> tuple[Any, ...]:
        """Emit a lifecycle hook (for integrations and framework adapters)."""
        return self._hooks.emit(hook, *args)

    def add_event_processor(self, processor: EventProcessor) -> None:
        """Register a processor run for every event, before scope processors."""
        self._pipeline.add_processor(processor)

    def add_integration(self, integration: Integration) -> None:
        """Set up an integration once per name."""
        with self._lock:
            if integration.name in self._integrations:
                logger.debug("Integration already installed", integration=integration.name)
                return
            self._integrations[integration.name] = integration
        integration.setup(self)
        logger.debug("Integration installed", integration=integration.name)

    def get_integration_by_name(self, name: str) -> Integration | None:
        with self._lock:
            return self._integrations.get(name)

    def record_dropped_event(self, reason: DropReason, category: DataCategory, quantity: int = 1) -> None:
        """Count events an integration discarded before capture."""
        self._recorder.record(reason, category, quantity)

    def add_breadcrumb(
        self,
        breadcrumb: Breadcrumb | None = None,
        hint: Mapping[str, Any] | None = None,
        *,
        scope: Scope | None = None,
        **fields: Any,
    ) -> bool:
        """Record a breadcrumb on scope (default: root scope).

        Either pass a Breadcrumb or its fields as keyword arguments.

        Returns:
            True if the breadcrumb was stored.
        """
        if breadcrumb is None:
            breadcrumb = Breadcrumb(**fields)
        return (scope or self._scope).add_breadcrumb(breadcrumb, hint)

    # =========================================================================
    # Capture API
    # =========================================================================

    def capture_exception(
        self,
        exception: BaseException | tuple[Any, Any, Any] | None = None,
        hint: EventHint | None = None,
        scope: Scope | None = None,
    ) -> str:
        """Capture an exception (default: the one currently being handled).

        An exception hinted as ``expected`` produces no error event; spans
        it passes through still complete normally.

        Returns:
            The event id.

        Raises:
            ClientClosedError: If the client is closed.
        """
        self._check_open()
        hint = hint if hint is not None else EventHint()
        event_id = hint.event_id or new_event_id()

        if hint.expected:
            logger.debug("Expected exception not reported", event_id=event_id)
            return event_id

        raw: Any = exception if exception is not None else current_exc_info()
        if hint.mechanism is None:
            hint.mechanism = Mechanism()

        scope = scope or self._scope
        session = scope.session
        if session is not None:
            session.record_error(crashed=not hint.mechanism.handled)

        return self._capture(raw, hint, scope, event_id=event_id)

    def capture_message(
        self,
        message: str,
        level: SeverityLevel = SeverityLevel.INFO,
        hint: EventHint | None = None,
        scope: Scope | None = None,
    ) -> str:
        """Capture a plain message.

        Raises:
            ClientClosedError: If the client is closed.
        """
        self._check_open()
        hint = hint if hint is not None else EventHint()
        event_id = hint.event_id or new_event_id()
        return self._capture(message, hint, scope or self._scope, level=SeverityLevel(level), event_id=event_id)

    def capture_event(
        self,
        event: Event | Mapping[str, Any],
        hint: EventHint | None = None,
        scope: Scope | None = None,
    ) -> str:
        """Capture a pre-built Event or wire-format mapping.

        Raises:
            ClientClosedError: If the client is closed.
        """
        self._check_open()
        hint = hint if hint is not None else EventHint()
        event_id = hint.event_id
        if event_id is None and isinstance(event, Event):
            event_id = event.event_id
        elif event_id is None and isinstance(event, Mapping) and isinstance(event.get("event_id"), str):
            event_id = event["event_id"]
        return self._capture(event, hint, scope or self._scope, event_id=event_id or new_event_id())

    def _capture(
        self,
        raw: Any,
        hint: EventHint,
        scope: Scope,
        *,
        event_id: str,
        level: SeverityLevel | None = None,
    ) -> str:
        if not self._is_transaction_input(raw) and self._rng.random() >= self._settings.sample_rate:
            self._recorder.record(DropReason.SAMPLE_RATE, DataCategory.ERROR)
            logger.debug("Event sampled out", event_id=event_id, sample_rate=self._settings.sample_rate)
            return event_id

        try:
            event = self._pipeline.process(raw, hint, scope, level=level, event_id=event_id)
        except MalformedInputError:
            # Already counted and logged by the pipeline
            return event_id
        if event is not None:
            self._send_event(event, hint, scope)
        return event_id

    @staticmethod
    def _is_transaction_input(raw: Any) -> bool:
        if isinstance(raw, Event):
            return raw.is_transaction
        return isinstance(raw, Mapping) and raw.get("type") == "transaction"

    def capture_session(self, session: Session) -> None:
        """Send a release-health session update.

        Raises:
            ClientClosedError: If the client is closed.
        """
        self._check_open()
        if session.release is None:
            session.release = self._settings.release
        if session.environment is None:
            session.environment = self._settings.environment
        self._send_items([session_item(session)])
        session.init = False

    def capture_session_aggregates(self, aggregates: SessionAggregates) -> None:
        """Send pre-aggregated session counts (request-mode servers).

        Raises:
            ClientClosedError: If the client is closed.
        """
        self._check_open()
        if aggregates.release is None:
            aggregates.release = self._settings.release
        if aggregates.environment is None:
            aggregates.environment = self._settings.environment
        self._send_items([sessions_item(aggregates)])

    def capture_check_in(
        self,
        check_in: CheckIn,
        monitor_config: MonitorConfig | None = None,
        scope: Scope | None = None,
    ) -> str:
        """Send a cron monitor check-in.

        Returns:
            The check-in id.

        Raises:
            ClientClosedError: If the client is closed.
        """
        self._check_open()
        item = check_in_item(
            check_in,
            release=self._settings.release,
            environment=self._settings.environment,
            monitor_config=monitor_config,
            trace=(scope or self._scope).trace_context(),
        )
        self._send_items([item])
        return check_in.check_in_id

    # =========================================================================
    # Envelope assembly and hand-off
    # =========================================================================

    def _send_event(self, event: Event, hint: EventHint, scope: Scope, dsc: DynamicSamplingContext | None = None) -> None:
        try:
            item = event_item(event)
        except MalformedInputError as e:
            self._recorder.record(DropReason.INTERNAL_SDK_ERROR, event.data_category)
            logger.warning("Event could not be serialized", event_id=event.event_id, error=str(e))
            return

        if dsc is None:
            dsc = self._dsc_for_scope(scope)
        future = self._send_items([item], event_id=event.event_id, trace=dsc.to_dict() if dsc is not None else None)
        if future is not None:
            future.add_done_callback(lambda f: self._hooks.emit(HookName.AFTER_SEND_EVENT, event, f.result()))

    def _send_items(
        self,
        items: list[EnvelopeItem],
        *,
        event_id: str | None = None,
        trace: Mapping[str, Any] | None = None,
    ) -> Future[DeliveryResult] | None:
        envelope = self._envelopes.build(items, event_id=event_id, trace=trace)
        self._hooks.emit(HookName.BEFORE_ENVELOPE, envelope)
        if self._transport is None:
            return None
        return self._transport.send(envelope)

    def send_envelope(self, envelope: Envelope) -> Future[DeliveryResult] | None:
        """Hand a pre-built envelope to the transport.

        Returns:
            The delivery future, or None if no transport is configured.

        Raises:
            ClientClosedError: If the client is closed.
        """
        self._check_open()
        if self._transport is None:
            return None
        return self._transport.send(envelope)

    # =========================================================================
    # Tracing
    # =========================================================================

    def start_span(
        self,
        name: str,
        *,
        op: str | None = None,
        attributes: Mapping[str, Any] | None = None,
        scope: Scope | None = None,
        parent: Span | None = None,
    ) -> Span:
        """Create a span; use it as a context manager to make it active.

        The first span of a trace in this process is a segment; its
        sampling decision comes from the SamplingEngine (inheriting an
        incoming trace's decision). Child spans inherit their segment's
        decision.
        """
        scope = scope or self._scope
        parent = parent or scope.span
        attributes = dict(attributes or {})

        if parent is not None:
            sampled = parent.sampled
            span = Span(
                name,
                trace_id=parent.trace_id,
                sampled=sampled,
                parent_span_id=parent.span_id,
                op=op,
                attributes=attributes,
                segment=parent.segment,
                on_end=lambda s: self._on_span_end(s, scope),
                scope=scope,
            )
        else:
            propagation = scope.propagation_context
            parent_context = propagation.to_trace_context() if propagation.parent_span_id else None
            result = self._sampling.sample(attributes, name, propagation.sampled, parent_context)
            sample_rate = result.sample_rate
            if sample_rate is None and propagation.dsc is not None:
                sample_rate = propagation.dsc.sample_rate
            span = Span(
                name,
                trace_id=propagation.trace_id,
                sampled=result.sampled,
                parent_span_id=propagation.parent_span_id,
                op=op,
                attributes=attributes,
                sample_rate=sample_rate,
                on_end=lambda s: self._on_span_end(s, scope),
                scope=scope,
            )
            # An incoming trace already has a frozen DSC from its head service
            span.dsc = propagation.dsc

        self._hooks.emit(HookName.SPAN_START, span)
        return span

    def _on_span_end(self, span: Span, scope: Scope) -> None:
        self._hooks.emit(HookName.SPAN_END, span)
        if not span.is_segment:
            return
        if not span.sampled:
            if self._sampling.tracing_enabled:
                self._recorder.record(DropReason.SAMPLE_RATE, DataCategory.TRANSACTION)
            return
        if self._closed:
            logger.debug("Span ended after close, transaction not sent", span=span.name)
            return

        event = Event(
            type="transaction",
            transaction=span.name,
            start_timestamp=span.start_timestamp,
            timestamp=span.end_timestamp if span.end_timestamp is not None else span.start_timestamp,
            contexts={"trace": span.to_trace_context()},
            spans=[child.to_dict() for child in span.finished_children],
        )
        if span.attributes:
            event.extra = dict(span.attributes)
        hint = EventHint()
        try:
            processed = self._pipeline.process(event, hint, scope)
        except MalformedInputError:
            return
        if processed is not None:
            try:
                self._send_event(processed, hint, scope, dsc=self.get_dynamic_sampling_context(span))
            except ClientClosedError:
                logger.debug("Transport closed before transaction was sent", span=span.name)

    def continue_trace(
        self,
        sentry_trace: str | None,
        baggage: str | None = None,
        scope: Scope | None = None,
    ) -> PropagationContext:
        """Continue an incoming trace on scope (default: root scope)."""
        context = PropagationContext.from_headers(sentry_trace, baggage)
        (scope or self._scope).set_propagation_context(context)
        return context

    def get_dynamic_sampling_context(self, span: Span | None = None, scope: Scope | None = None) -> DynamicSamplingContext:
        """DSC of a span's trace, or of a scope's trace when no span is given.

        Created once per trace id and shared by every scope and segment of
        that trace; ``create_dsc`` fires only on creation.
        """
        if span is None:
            scope = scope or self._scope
            if scope.span is not None:
                span = scope.span
            else:
                return self._dsc_for_propagation(scope)

        segment = span.segment
        with self._lock:
            if segment.dsc is not None:
                return segment.dsc
            dsc = self._trace_dscs.get(segment.trace_id)
            if dsc is not None:
                segment.dsc = dsc
                return dsc
            dsc = DynamicSamplingContext(
                trace_id=segment.trace_id,
                public_key=self._dsn.public_key if self._dsn else None,
                sample_rate=segment.sample_rate,
                sampled=segment.sampled,
                release=self._settings.release,
                environment=self._settings.environment,
                transaction=segment.name,
            )
            segment.dsc = dsc
            self._remember_dsc(dsc)
        self._hooks.emit(HookName.CREATE_DSC, dsc, segment)
        return dsc

    def _dsc_for_propagation(self, scope: Scope) -> DynamicSamplingContext:
        with self._lock:
            propagation = scope.propagation_context
            if propagation.dsc is not None:
                return propagation.dsc
            # forked scopes share the trace id but not the PropagationContext
            dsc = self._trace_dscs.get(propagation.trace_id)
            if dsc is None:
                dsc = DynamicSamplingContext(
                    trace_id=propagation.trace_id,
                    public_key=self._dsn.public_key if self._dsn else None,
                    sampled=propagation.sampled,
                    release=self._settings.release,
                    environment=self._settings.environment,
                )
                self._remember_dsc(dsc)
                created = True
            else:
                created = False
            scope.set_propagation_context(dataclasses.replace(propagation, dsc=dsc))
        if created:
            self._hooks.emit(HookName.CREATE_DSC, dsc)
        return dsc

    def _remember_dsc(self, dsc: DynamicSamplingContext) -> None:
        """Record the DSC of a trace; the caller holds self._lock."""
        self._trace_dscs[dsc.trace_id] = dsc
        if len(self._trace_dscs) > _DSC_CACHE_SIZE:
            del self._trace_dscs[next(iter(self._trace_dscs))]

    def _dsc_for_scope(self, scope: Scope) -> DynamicSamplingContext | None:
        if scope.span is not None:
            return self.get_dynamic_sampling_context(scope.span)
        if self._sampling.tracing_enabled or scope.propagation_context.parent_span_id is not None:
            return self._dsc_for_propagation(scope)
        return None

    def trace_propagation_headers(self, scope: Scope | None = None) -> dict[str, str]:
        """``sentry-trace`` and ``baggage`` headers for an outgoing request."""
        scope = scope or self._scope
        span = scope.span
        if span is not None:
            sentry_trace = span.to_traceparent()
        else:
            propagation = scope.propagation_context
            sampled = "" if propagation.sampled is None else f"-{1 if propagation.sampled else 0}"
            sentry_trace = f"{propagation.trace_id}-{propagation.span_id}{sampled}"
        headers = {"sentry-trace": sentry_trace}
        baggage = self.get_dynamic_sampling_context(span, scope).to_baggage()
        if baggage:
            headers["baggage"] = baggage
        return headers

    # =========================================================================
    # Draining
    # =========================================================================

    def _send_client_report(self) -> None:
        if not self._settings.send_client_reports or self._transport is None:
            return
        report = self._recorder.pop_report()
        if report is None:
            return
        try:
            self._transport.send(self._envelopes.build([client_report_item(report)]))
        except ClientClosedError:
            logger.debug("Transport closed, client report not sent", discarded=len(report.discarded_events))

    def flush(self, timeout: float | None = None) -> bool:
        """Send pending client reports and wait for the transport to drain.

        Args:
            timeout: Seconds to wait; None waits forever

        Returns:
            True if everything queued was delivered or discarded in time.
        """
        self._hooks.emit(HookName.FLUSH)
        self._send_client_report()
        if self._transport is None:
            return True
        return self._transport.flush(timeout)

    def close(self, timeout: float | None = None) -> bool:
        """Flush, then permanently stop accepting captures.

        Idempotent: later calls return the first call's result.
        """
        with self._lock:
            if self._closed:
                return bool(self._close_result)
            self._closed = True

        self._hooks.emit(HookName.CLOSE)
        self._send_client_report()
        result = self._transport.close(timeout) if self._transport is not None else True
        with self._lock:
            self._close_result = result
        logger.debug("Client closed", drained=result, dropped_total=self._recorder.dropped_total)
        return result

    def __enter__(self) -> Client:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
