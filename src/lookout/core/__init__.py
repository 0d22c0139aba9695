# src/lookout/core/__init__.py
"""Core engine: hooks, scopes, sampling, event pipeline, envelopes, configuration, logging."""

from lookout.core.client_reports import ClientReport, DropRecorder
from lookout.core.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from lookout.core.config import ClientSettings, TransportSettings, load_settings
from lookout.core.dsn import Dsn
from lookout.core.envelope import Envelope, EnvelopeBuilder, EnvelopeItem, parse_envelope
from lookout.core.hooks import DROP, HookName, HookRegistry, SamplingData, SamplingDecision
from lookout.core.logging import configure_logging
from lookout.core.normalize import normalize
from lookout.core.pipeline import EventPipeline
from lookout.core.sampling import SamplingEngine, SamplingResult
from lookout.core.scope import Scope
from lookout.core.tracing import DynamicSamplingContext, PropagationContext, Span

__all__ = [
    "DEFAULT_CLOCK",
    "DROP",
    "ClientReport",
    "ClientSettings",
    "Clock",
    "DropRecorder",
    "Dsn",
    "DynamicSamplingContext",
    "Envelope",
    "EnvelopeBuilder",
    "EnvelopeItem",
    "EventPipeline",
    "HookName",
    "HookRegistry",
    "MockClock",
    "PropagationContext",
    "SamplingData",
    "SamplingDecision",
    "SamplingEngine",
    "SamplingResult",
    "Scope",
    "Span",
    "SystemClock",
    "TransportSettings",
    "configure_logging",
    "load_settings",
    "normalize",
    "parse_envelope",
]
