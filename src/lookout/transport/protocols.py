# src/lookout/transport/protocols.py
"""Protocol definitions for transport backends.

Backends perform one HTTP-like exchange per call: a serialized envelope
goes out, a status code and headers come back. Queueing, concurrency,
retries and rate limits all live in the TransportManager, so a backend
stays a thin adapter over a network client.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class TransportRequest:
    """Serialized envelope plus content headers."""

    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


@dataclass(frozen=True, slots=True)
class TransportResponse:
    """Backend answer: status plus (lower-cased) response headers."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType({str(k).lower(): str(v) for k, v in self.headers.items()}))


@runtime_checkable
class TransportProtocol(Protocol):
    """Protocol for transport backends.

    Backends are discovered via pluggy hooks (``lookout_get_transports``)
    and selected by ``transport.backend`` in ClientSettings.

    Lifecycle:
        1. Discovery: lookout_get_transports hook returns backend classes
        2. Instantiation: the factory creates one instance
        3. Configuration: configure() called with the DSN, timeout and
           ``transport.options``
        4. Operation: send() called from worker threads, possibly
           concurrently (up to ``max_concurrency``)
        5. Shutdown: close() called once by TransportManager.close()

    Error handling:
        - configure() MUST raise TransportConfigurationError on invalid config
        - send() raises on network failure; the manager retries
        - close() MUST be idempotent
    """

    @property
    def name(self) -> str:
        """Backend name referenced by ``transport.backend``."""
        ...

    def configure(self, config: dict[str, Any]) -> None:
        """Configure the backend.

        Args:
            config: ``dsn`` (str or None), ``timeout_seconds`` (float),
                ``sdk_client`` (str) plus backend-specific options

        Raises:
            TransportConfigurationError: If configuration is invalid
        """
        ...

    def send(self, request: TransportRequest) -> TransportResponse:
        """Deliver one serialized envelope.

        Raises:
            Exception: Any network-level failure (retried by the manager)
        """
        ...

    def close(self) -> None:
        """Release network resources. Must be idempotent."""
        ...
