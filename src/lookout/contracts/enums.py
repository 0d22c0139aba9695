# src/lookout/contracts/enums.py
"""Status codes, categories, and kinds used across subsystem boundaries.

Values are the wire strings the ingestion endpoint understands, so every
enum here is a StrEnum and serializes as its value.
"""

from enum import StrEnum


class SeverityLevel(StrEnum):
    """Severity of a captured event or breadcrumb."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class DataCategory(StrEnum):
    """Rate-limit and client-report bucket for an envelope item.

    The backend applies rate limits per category, and discarded events are
    accounted per category.
    """

    DEFAULT = "default"
    ERROR = "error"
    TRANSACTION = "transaction"
    SPAN = "span"
    SESSION = "session"
    MONITOR = "monitor"
    ATTACHMENT = "attachment"
    INTERNAL = "internal"


class DropReason(StrEnum):
    """Why an event never reached the ingestion endpoint."""

    BEFORE_SEND = "before_send"
    EVENT_PROCESSOR = "event_processor"
    SAMPLE_RATE = "sample_rate"
    QUEUE_OVERFLOW = "queue_overflow"
    RATELIMIT_BACKOFF = "ratelimit_backoff"
    NETWORK_ERROR = "network_error"
    SEND_ERROR = "send_error"
    INTERNAL_SDK_ERROR = "internal_sdk_error"
    CLIENT_CLOSED = "client_closed"


class EnvelopeItemType(StrEnum):
    """Payload type of an envelope item."""

    EVENT = "event"
    TRANSACTION = "transaction"
    SESSION = "session"
    SESSIONS = "sessions"
    CHECK_IN = "check_in"
    CLIENT_REPORT = "client_report"

    @property
    def data_category(self) -> DataCategory:
        """Category the backend rate-limits this item type under."""
        return _ITEM_CATEGORIES[self]


_ITEM_CATEGORIES: dict[EnvelopeItemType, DataCategory] = {
    EnvelopeItemType.EVENT: DataCategory.ERROR,
    EnvelopeItemType.TRANSACTION: DataCategory.TRANSACTION,
    EnvelopeItemType.SESSION: DataCategory.SESSION,
    EnvelopeItemType.SESSIONS: DataCategory.SESSION,
    EnvelopeItemType.CHECK_IN: DataCategory.MONITOR,
    EnvelopeItemType.CLIENT_REPORT: DataCategory.INTERNAL,
}


class DeliveryOutcome(StrEnum):
    """Terminal state of one envelope in the transport state machine.

    queued -> in-flight -> {delivered | retrying -> in-flight |
    rate-limited-discarded | fatally-discarded}. Envelopes that never get
    queued end as QUEUE_OVERFLOW or RATE_LIMITED; envelopes still queued at
    close end as CLIENT_CLOSED.
    """

    DELIVERED = "delivered"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"
    QUEUE_OVERFLOW = "queue_overflow"
    CLIENT_CLOSED = "client_closed"


class OverflowPolicy(StrEnum):
    """What the transport does when its buffer is full.

    Values:
        REJECT_NEW: Refuse the incoming envelope (recorded as queue_overflow)
        DROP_OLDEST: Evict the oldest queued envelope to make room
    """

    REJECT_NEW = "reject_new"
    DROP_OLDEST = "drop_oldest"


class SessionStatus(StrEnum):
    """Release-health session state."""

    OK = "ok"
    EXITED = "exited"
    CRASHED = "crashed"
    ABNORMAL = "abnormal"


class CheckInStatus(StrEnum):
    """Cron monitor check-in state."""

    IN_PROGRESS = "in_progress"
    OK = "ok"
    ERROR = "error"


class SpanStatus(StrEnum):
    """Outcome of a traced unit of work."""

    OK = "ok"
    INTERNAL_ERROR = "internal_error"
    CANCELLED = "cancelled"
