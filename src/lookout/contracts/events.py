# src/lookout/contracts/events.py
"""Event data model.

An Event is the normalized record of an exception, message, or finished
transaction. It is mutable while it moves through the pipeline (event
processors may edit it in place) and is frozen into bytes when it is
placed into an envelope item.

``to_dict()`` produces the wire mapping and ``from_mapping()`` accepts a
pre-built wire mapping (``capture_event``); both drop empty fields so
payloads stay compact.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from lookout.contracts.enums import DataCategory, SeverityLevel
from lookout.contracts.errors import MalformedInputError


def new_event_id() -> str:
    """Return a fresh 32-character hex event identifier."""
    return uuid.uuid4().hex


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    """Drop None values and empty containers."""
    return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


def _require_mapping(name: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise MalformedInputError(f"Event field '{name}' must be a mapping, got {type(value).__name__}")
    return value


def _require_list(name: str, value: Any) -> list[Any]:
    if not isinstance(value, list | tuple):
        raise MalformedInputError(f"Event field '{name}' must be a list, got {type(value).__name__}")
    return list(value)


def _optional_str(name: str, value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedInputError(f"Event field '{name}' must be a string, got {type(value).__name__}")
    return value


def _optional_float(name: str, value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise MalformedInputError(f"Event field '{name}' must be a number, got {type(value).__name__}")
    return float(value)


def _level(value: Any) -> SeverityLevel | None:
    if value is None:
        return None
    try:
        return SeverityLevel(value)
    except ValueError:
        raise MalformedInputError(f"Unknown severity level: {value!r}") from None


@dataclass(slots=True)
class StackFrame:
    """One frame of a captured stack trace."""

    filename: str
    function: str
    lineno: int | None = None
    module: str | None = None
    abs_path: str | None = None
    context_line: str | None = None
    in_app: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "filename": self.filename,
                "function": self.function,
                "lineno": self.lineno,
                "module": self.module,
                "abs_path": self.abs_path,
                "context_line": self.context_line,
                "in_app": self.in_app,
            }
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> StackFrame:
        lineno = data.get("lineno")
        if lineno is not None and (isinstance(lineno, bool) or not isinstance(lineno, int)):
            raise MalformedInputError(f"Frame lineno must be an integer, got {lineno!r}")
        return cls(
            filename=str(data.get("filename", "<unknown>")),
            function=str(data.get("function", "<unknown>")),
            lineno=lineno,
            module=_optional_str("frame.module", data.get("module")),
            abs_path=_optional_str("frame.abs_path", data.get("abs_path")),
            context_line=_optional_str("frame.context_line", data.get("context_line")),
            in_app=data.get("in_app"),
        )


@dataclass(slots=True)
class Mechanism:
    """How an exception was captured.

    ``handled=False`` marks exceptions that escaped application code; a
    session in scope is marked crashed when one is captured.
    """

    type: str = "generic"
    handled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "handled": self.handled}


@dataclass(slots=True)
class ExceptionValue:
    """One exception in a chain."""

    type: str
    value: str
    module: str | None = None
    mechanism: Mechanism | None = None
    frames: list[StackFrame] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "type": self.type,
                "value": self.value,
                "module": self.module,
                "mechanism": self.mechanism.to_dict() if self.mechanism else None,
                "stacktrace": {"frames": [f.to_dict() for f in self.frames]} if self.frames else None,
            }
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ExceptionValue:
        data = _require_mapping("exception.values[]", data)
        mechanism = None
        if data.get("mechanism") is not None:
            raw = _require_mapping("mechanism", data["mechanism"])
            mechanism = Mechanism(type=str(raw.get("type", "generic")), handled=bool(raw.get("handled", True)))
        frames: list[StackFrame] = []
        if data.get("stacktrace") is not None:
            stacktrace = _require_mapping("stacktrace", data["stacktrace"])
            frames = [
                StackFrame.from_mapping(_require_mapping("frame", f))
                for f in _require_list("frames", stacktrace.get("frames", []))
            ]
        return cls(
            type=str(data.get("type", "Error")),
            value=str(data.get("value", "")),
            module=_optional_str("exception.module", data.get("module")),
            mechanism=mechanism,
            frames=frames,
        )


@dataclass(slots=True)
class ExceptionList:
    """Ordered exception chain: oldest cause first, captured exception last."""

    values: list[ExceptionValue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"values": [v.to_dict() for v in self.values]}


@dataclass(slots=True)
class RequestInfo:
    """HTTP request context attached by a framework adapter."""

    method: str | None = None
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    query_string: str | None = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            k: v
            for k, v in {
                "method": self.method,
                "url": self.url,
                "headers": dict(self.headers),
                "cookies": dict(self.cookies),
                "query_string": self.query_string,
                "data": self.data,
            }.items()
            if v is not None
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> RequestInfo:
        return cls(
            method=_optional_str("request.method", data.get("method")),
            url=_optional_str("request.url", data.get("url")),
            headers={str(k): str(v) for k, v in _require_mapping("request.headers", data.get("headers", {})).items()},
            cookies={str(k): str(v) for k, v in _require_mapping("request.cookies", data.get("cookies", {})).items()},
            query_string=_optional_str("request.query_string", data.get("query_string")),
            data=data.get("data"),
        )


@dataclass(slots=True)
class Breadcrumb:
    """A timestamped record of a discrete prior action."""

    message: str | None = None
    category: str | None = None
    type: str = "default"
    level: SeverityLevel = SeverityLevel.INFO
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "timestamp": self.timestamp,
                "type": self.type,
                "category": self.category,
                "message": self.message,
                "level": self.level.value,
                "data": self.data,
            }
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Breadcrumb:
        data = _require_mapping("breadcrumbs[]", data)
        return cls(
            message=_optional_str("breadcrumb.message", data.get("message")),
            category=_optional_str("breadcrumb.category", data.get("category")),
            type=str(data.get("type", "default")),
            level=_level(data.get("level")) or SeverityLevel.INFO,
            data=dict(_require_mapping("breadcrumb.data", data.get("data", {}))),
            timestamp=_optional_float("breadcrumb.timestamp", data.get("timestamp")) or time.time(),
        )


@dataclass(slots=True)
class EventHint:
    """Out-of-band information passed alongside a capture.

    Attributes:
        original_exception: The exception object that produced the event
        mechanism: Capture mechanism (handled or not)
        event_id: Pre-assigned event id, if the caller needs one up front
        data: Free-form data for event processors
        expected: The exception is part of normal control flow (e.g. a
            403 raised on purpose); no error event is created for it
    """

    original_exception: BaseException | None = None
    mechanism: Mechanism | None = None
    event_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    expected: bool = False


@dataclass(slots=True)
class Event:
    """A normalized error, message, or transaction record."""

    event_id: str = field(default_factory=new_event_id)
    timestamp: float = field(default_factory=time.time)
    level: SeverityLevel | None = None
    platform: str = "python"
    message: str | None = None
    logger: str | None = None
    exception: ExceptionList | None = None
    request: RequestInfo | None = None
    user: dict[str, Any] = field(default_factory=dict)
    contexts: dict[str, dict[str, Any]] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    breadcrumbs: list[Breadcrumb] = field(default_factory=list)
    fingerprint: list[str] = field(default_factory=list)
    transaction: str | None = None
    type: str | None = None
    start_timestamp: float | None = None
    spans: list[dict[str, Any]] = field(default_factory=list)
    environment: str | None = None
    release: str | None = None
    server_name: str | None = None
    sdk: dict[str, Any] = field(default_factory=dict)

    @property
    def is_transaction(self) -> bool:
        return self.type == "transaction"

    @property
    def data_category(self) -> DataCategory:
        """Category used for rate limiting and drop accounting."""
        return DataCategory.TRANSACTION if self.is_transaction else DataCategory.ERROR

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            {
                "event_id": self.event_id,
                "timestamp": self.timestamp,
                "level": self.level.value if self.level else None,
                "platform": self.platform,
                "message": self.message,
                "logger": self.logger,
                "exception": self.exception.to_dict() if self.exception else None,
                "request": self.request.to_dict() if self.request else None,
                "user": self.user,
                "contexts": self.contexts,
                "tags": self.tags,
                "extra": self.extra,
                "breadcrumbs": {"values": [b.to_dict() for b in self.breadcrumbs]} if self.breadcrumbs else None,
                "fingerprint": self.fingerprint,
                "transaction": self.transaction,
                "type": self.type,
                "start_timestamp": self.start_timestamp,
                "spans": self.spans,
                "environment": self.environment,
                "release": self.release,
                "server_name": self.server_name,
                "sdk": self.sdk,
            }
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Event:
        """Build an Event from a wire-format mapping.

        Raises:
            MalformedInputError: If a known field has the wrong shape.
        """
        data = _require_mapping("event", data)
        if any(not isinstance(k, str) for k in data):
            raise MalformedInputError("Event keys must be strings")

        exception = None
        if data.get("exception") is not None:
            raw_exc = _require_mapping("exception", data["exception"])
            exception = ExceptionList(
                values=[ExceptionValue.from_mapping(v) for v in _require_list("exception.values", raw_exc.get("values", []))]
            )

        request = None
        if data.get("request") is not None:
            request = RequestInfo.from_mapping(_require_mapping("request", data["request"]))

        raw_crumbs = data.get("breadcrumbs") or []
        if isinstance(raw_crumbs, Mapping):
            raw_crumbs = raw_crumbs.get("values", [])
        breadcrumbs = [Breadcrumb.from_mapping(b) for b in _require_list("breadcrumbs", raw_crumbs)]

        contexts = {
            str(k): dict(_require_mapping(f"contexts.{k}", v))
            for k, v in _require_mapping("contexts", data.get("contexts", {})).items()
        }

        return cls(
            event_id=_optional_str("event_id", data.get("event_id")) or new_event_id(),
            timestamp=_optional_float("timestamp", data.get("timestamp")) or time.time(),
            level=_level(data.get("level")),
            platform=str(data.get("platform", "python")),
            message=_optional_str("message", data.get("message")),
            logger=_optional_str("logger", data.get("logger")),
            exception=exception,
            request=request,
            user=dict(_require_mapping("user", data.get("user", {}))),
            contexts=contexts,
            tags={str(k): str(v) for k, v in _require_mapping("tags", data.get("tags", {})).items()},
            extra=dict(_require_mapping("extra", data.get("extra", {}))),
            breadcrumbs=breadcrumbs,
            fingerprint=[str(f) for f in _require_list("fingerprint", data.get("fingerprint", []))],
            transaction=_optional_str("transaction", data.get("transaction")),
            type=_optional_str("type", data.get("type")),
            start_timestamp=_optional_float("start_timestamp", data.get("start_timestamp")),
            spans=[dict(_require_mapping("spans[]", s)) for s in _require_list("spans", data.get("spans", []))],
            environment=_optional_str("environment", data.get("environment")),
            release=_optional_str("release", data.get("release")),
            server_name=_optional_str("server_name", data.get("server_name")),
            sdk=dict(_require_mapping("sdk", data.get("sdk", {}))),
        )
