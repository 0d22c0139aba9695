"""
Lookout: application monitoring client.

Captures errors, messages and traces, enriches them with scope context,
and delivers them to a monitoring backend in the background without ever
blocking or breaking the host application.
"""

from lookout.client import Client
from lookout.contracts import (
    Breadcrumb,
    CheckIn,
    CheckInStatus,
    DataCategory,
    DropReason,
    Event,
    EventHint,
    Mechanism,
    Session,
    SeverityLevel,
)
from lookout.core.config import ClientSettings, TransportSettings, load_settings
from lookout.core.hooks import DROP, HookName
from lookout.core.scope import Scope
from lookout.core.tracing import Span
from lookout.integrations import DedupeIntegration

__version__ = "0.1.0"

__all__ = [
    "DROP",
    "Breadcrumb",
    "CheckIn",
    "CheckInStatus",
    "Client",
    "ClientSettings",
    "DataCategory",
    "DedupeIntegration",
    "DropReason",
    "Event",
    "EventHint",
    "HookName",
    "Mechanism",
    "Scope",
    "Session",
    "SeverityLevel",
    "Span",
    "TransportSettings",
    "__version__",
    "load_settings",
]
