"""Asynchronous envelope delivery.

Envelopes are queued by TransportManager.send() and delivered by worker
threads through a pluggable backend, with bounded concurrency, tenacity
retries and backend-issued rate limits.

Usage:
    from lookout.transport import create_transport_manager

    manager = create_transport_manager(settings.transport, recorder=recorder, dsn=settings.dsn)
    future = manager.send(envelope)
    manager.close(timeout=2.0)
"""

from lookout.transport.buffer import EnvelopeBuffer, QueueEntry
from lookout.transport.factory import create_transport, create_transport_manager, discover_transport_registry
from lookout.transport.hookspecs import hookimpl
from lookout.transport.manager import DeliveryResult, TransportManager
from lookout.transport.protocols import TransportProtocol, TransportRequest, TransportResponse
from lookout.transport.rate_limits import RateLimitTable
from lookout.transport.retry import RetryConfig

__all__ = [
    "DeliveryResult",
    "EnvelopeBuffer",
    "QueueEntry",
    "RateLimitTable",
    "RetryConfig",
    "TransportManager",
    "TransportProtocol",
    "TransportRequest",
    "TransportResponse",
    "create_transport",
    "create_transport_manager",
    "discover_transport_registry",
    "hookimpl",
]
