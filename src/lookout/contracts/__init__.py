"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core or
transport. Settings classes are NOT re-exported here - import them from
lookout.core.config.

Import patterns:
    from lookout.contracts import Event, EventHint, DataCategory
    from lookout.core.config import ClientSettings
"""

from lookout.contracts.enums import (
    CheckInStatus,
    DataCategory,
    DeliveryOutcome,
    DropReason,
    EnvelopeItemType,
    OverflowPolicy,
    SessionStatus,
    SeverityLevel,
    SpanStatus,
)
from lookout.contracts.errors import (
    ClientClosedError,
    DeliveryFailure,
    DsnError,
    HookArgumentError,
    LookoutError,
    MalformedInputError,
    ProcessorDropped,
    QueueOverflow,
    RateLimited,
    TransportConfigurationError,
    UnknownHookError,
)
from lookout.contracts.events import (
    Breadcrumb,
    Event,
    EventHint,
    ExceptionList,
    ExceptionValue,
    Mechanism,
    RequestInfo,
    StackFrame,
    new_event_id,
)
from lookout.contracts.health import (
    CheckIn,
    MonitorConfig,
    MonitorSchedule,
    Session,
    SessionAggregateBucket,
    SessionAggregates,
)

__all__ = [
    "Breadcrumb",
    "CheckIn",
    "CheckInStatus",
    "ClientClosedError",
    "DataCategory",
    "DeliveryFailure",
    "DeliveryOutcome",
    "DropReason",
    "DsnError",
    "EnvelopeItemType",
    "Event",
    "EventHint",
    "ExceptionList",
    "ExceptionValue",
    "HookArgumentError",
    "LookoutError",
    "MalformedInputError",
    "Mechanism",
    "MonitorConfig",
    "MonitorSchedule",
    "OverflowPolicy",
    "ProcessorDropped",
    "QueueOverflow",
    "RateLimited",
    "RequestInfo",
    "Session",
    "SessionAggregateBucket",
    "SessionAggregates",
    "SessionStatus",
    "SeverityLevel",
    "SpanStatus",
    "StackFrame",
    "TransportConfigurationError",
    "UnknownHookError",
    "new_event_id",
]
