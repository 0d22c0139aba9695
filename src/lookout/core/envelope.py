# src/lookout/core/envelope.py
"""Envelope construction, serialization and parsing.

Wire format (newline-delimited)::

    {envelope header json}\\n
    {item header json}\\n
    {item payload bytes}\\n
    ...

Each item header carries ``type`` and ``length`` (payload size in bytes),
so payloads may contain newlines. The parser also accepts items without
``length``, whose payload then runs to the next newline.

Envelopes and items are immutable: headers are read-only mappings and
payloads are bytes. Filtering produces a new envelope; item order is
always preserved.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from lookout.contracts.defaults import INTERNAL_DEFAULTS
from lookout.contracts.enums import DataCategory, EnvelopeItemType
from lookout.contracts.errors import MalformedInputError

if TYPE_CHECKING:
    from lookout.contracts.events import Event
    from lookout.contracts.health import CheckIn, MonitorConfig, Session, SessionAggregates
    from lookout.core.client_reports import ClientReport
    from lookout.core.dsn import Dsn

_JSON_CONTENT_TYPE = "application/json"


def _dumps(payload: Any) -> bytes:
    try:
        return json.dumps(payload, separators=(",", ":"), allow_nan=False, ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise MalformedInputError(f"Payload is not JSON-serializable: {e}") from e


@dataclass(frozen=True, slots=True)
class EnvelopeItem:
    """One (header, payload) pair."""

    headers: Mapping[str, Any]
    payload: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    @classmethod
    def from_json(cls, item_type: EnvelopeItemType, payload: Any, **headers: Any) -> EnvelopeItem:
        body = _dumps(payload)
        return cls(
            headers={"type": item_type.value, "length": len(body), "content_type": _JSON_CONTENT_TYPE, **headers},
            payload=body,
        )

    @property
    def type(self) -> str:
        return str(self.headers.get("type", ""))

    @property
    def data_category(self) -> DataCategory:
        """Rate-limit category; unknown item types fall back to DEFAULT."""
        try:
            return EnvelopeItemType(self.type).data_category
        except ValueError:
            return DataCategory.DEFAULT

    def json(self) -> Any:
        return json.loads(self.payload)


@dataclass(frozen=True, slots=True)
class Envelope:
    """Ordered, immutable multi-item transport payload."""

    headers: Mapping[str, Any]
    items: tuple[EnvelopeItem, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        object.__setattr__(self, "items", tuple(self.items))

    @property
    def event_id(self) -> str | None:
        return self.headers.get("event_id")

    @property
    def categories(self) -> list[DataCategory]:
        """Data category of each item, in item order."""
        return [item.data_category for item in self.items]

    def filter_items(self, keep: Callable[[EnvelopeItem], bool]) -> Envelope | None:
        """Return a new envelope with only the kept items, or None if none remain."""
        kept = tuple(item for item in self.items if keep(item))
        if not kept:
            return None
        if len(kept) == len(self.items):
            return self
        return Envelope(headers=self.headers, items=kept)

    def serialize(self) -> bytes:
        parts = [_dumps(dict(self.headers)), b"\n"]
        for item in self.items:
            headers = dict(item.headers)
            headers["length"] = len(item.payload)
            parts.extend((_dumps(headers), b"\n", item.payload, b"\n"))
        return b"".join(parts)


def parse_envelope(data: bytes) -> Envelope:
    """Inverse of Envelope.serialize().

    Raises:
        MalformedInputError: If the bytes are not a valid envelope.
    """
    try:
        header_line, _, rest = data.partition(b"\n")
        headers = json.loads(header_line)
        if not isinstance(headers, dict):
            raise MalformedInputError("Envelope header must be a JSON object")
        items: list[EnvelopeItem] = []
        pos = 0
        while pos < len(rest):
            end = rest.find(b"\n", pos)
            if end == -1:
                end = len(rest)
            line = rest[pos:end]
            pos = end + 1
            if not line.strip():
                continue
            item_headers = json.loads(line)
            if not isinstance(item_headers, dict):
                raise MalformedInputError("Item header must be a JSON object")
            length = item_headers.get("length")
            if length is None:
                end = rest.find(b"\n", pos)
                if end == -1:
                    end = len(rest)
                payload = rest[pos:end]
                pos = end + 1
            else:
                payload = rest[pos : pos + length]
                if len(payload) != length:
                    raise MalformedInputError(f"Truncated item payload: expected {length} bytes, got {len(payload)}")
                pos += length + 1
            items.append(EnvelopeItem(headers=item_headers, payload=payload))
    except (json.JSONDecodeError, UnicodeDecodeError, AttributeError, TypeError) as e:
        raise MalformedInputError(f"Invalid envelope: {e}") from e
    return Envelope(headers=headers, items=tuple(items))


# =============================================================================
# Item constructors
# =============================================================================


def event_item(event: Event) -> EnvelopeItem:
    """Freeze an event into an ``event`` or ``transaction`` item."""
    item_type = EnvelopeItemType.TRANSACTION if event.is_transaction else EnvelopeItemType.EVENT
    return EnvelopeItem.from_json(item_type, event.to_dict())


def session_item(session: Session) -> EnvelopeItem:
    return EnvelopeItem.from_json(EnvelopeItemType.SESSION, session.to_dict())


def sessions_item(aggregates: SessionAggregates) -> EnvelopeItem:
    return EnvelopeItem.from_json(EnvelopeItemType.SESSIONS, aggregates.to_dict())


def check_in_item(
    check_in: CheckIn,
    *,
    release: str | None = None,
    environment: str | None = None,
    monitor_config: MonitorConfig | None = None,
    trace: Mapping[str, Any] | None = None,
) -> EnvelopeItem:
    payload: dict[str, Any] = {
        "check_in_id": check_in.check_in_id,
        "monitor_slug": check_in.monitor_slug,
        "status": check_in.status.value,
    }
    if check_in.duration is not None:
        payload["duration"] = check_in.duration
    if release:
        payload["release"] = release
    if environment:
        payload["environment"] = environment
    if monitor_config is not None:
        payload["monitor_config"] = monitor_config.to_dict()
    if trace:
        payload["contexts"] = {"trace": {"trace_id": trace["trace_id"]}}
    return EnvelopeItem.from_json(EnvelopeItemType.CHECK_IN, payload)


def client_report_item(report: ClientReport) -> EnvelopeItem:
    return EnvelopeItem.from_json(EnvelopeItemType.CLIENT_REPORT, report.to_dict())


class EnvelopeBuilder:
    """Wraps finalized items into envelopes with a common header.

    Example:
        >>> builder = EnvelopeBuilder(sdk={"name": "lookout.python", "version": "0.1.0"})
        >>> envelope = builder.build([event_item(event)], event_id=event.event_id)
    """

    def __init__(self, sdk: Mapping[str, Any] | None = None, dsn: Dsn | None = None) -> None:
        self._sdk = dict(sdk or {"name": INTERNAL_DEFAULTS["sdk"]["name"], "version": INTERNAL_DEFAULTS["sdk"]["version"]})
        self._dsn = dsn

    @property
    def sdk(self) -> dict[str, Any]:
        return dict(self._sdk)

    def build(
        self,
        items: Iterable[EnvelopeItem],
        *,
        event_id: str | None = None,
        trace: Mapping[str, Any] | None = None,
    ) -> Envelope:
        """Build an envelope; items keep their order."""
        headers: dict[str, Any] = {}
        if event_id is not None:
            headers["event_id"] = event_id
        headers["sent_at"] = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        headers["sdk"] = dict(self._sdk)
        if self._dsn is not None:
            headers["dsn"] = self._dsn.to_public_string()
        if trace:
            headers["trace"] = dict(trace)
        return Envelope(headers=headers, items=tuple(items))
