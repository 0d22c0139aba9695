# src/lookout/contracts/errors.py
"""Client-specific exceptions.

Only ClientClosedError and the programming errors (UnknownHookError,
HookArgumentError, DsnError, TransportConfigurationError) ever reach
the host application. Everything else is raised and handled inside the
client, then converted into drop accounting.
"""

from lookout.contracts.enums import DropReason


class LookoutError(Exception):
    """Base class for all client errors."""


class MalformedInputError(LookoutError):
    """Raised when raw capture input cannot be normalized into an Event.

    The event is dropped and counted as internal_sdk_error.
    """


class ProcessorDropped(LookoutError):
    """An event processor explicitly suppressed an event.

    Not an error condition. Used to carry the processor identity into
    logs and drop accounting.

    Attributes:
        processor: Display name of the processor that returned None
    """

    reason = DropReason.EVENT_PROCESSOR

    def __init__(self, processor: str) -> None:
        self.processor = processor
        super().__init__(f"Event dropped by processor {processor}")


class QueueOverflow(LookoutError):
    """The transport buffer had no room for an envelope."""

    reason = DropReason.QUEUE_OVERFLOW


class RateLimited(LookoutError):
    """The backend signalled capacity exhaustion for a category."""

    reason = DropReason.RATELIMIT_BACKOFF


class DeliveryFailure(LookoutError):
    """Transient delivery failure (network error or 5xx).

    Raised inside a delivery attempt so tenacity retries it.

    Attributes:
        status_code: HTTP status if a response was received, else None
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ClientClosedError(LookoutError):
    """Raised when capture or send is attempted after close()."""


class UnknownHookError(LookoutError, ValueError):
    """Raised when registering a listener for a hook name that does not exist."""


class HookArgumentError(LookoutError, TypeError):
    """Raised when a hook is emitted with the wrong number of arguments."""


class DsnError(LookoutError, ValueError):
    """Raised when a DSN string cannot be parsed."""


class TransportConfigurationError(LookoutError):
    """Raised when a transport backend cannot be discovered or configured.

    This is raised during client construction, NOT during delivery.
    Delivery must not raise - it logs and records drops instead.

    Attributes:
        backend_name: Name of the backend that failed
        message: Human-readable error description
    """

    def __init__(self, backend_name: str, message: str) -> None:
        self.backend_name = backend_name
        self.message = message
        super().__init__(f"Transport '{backend_name}' failed: {message}")
