# src/lookout/contracts/health.py
"""Release-health and cron-monitor records.

Sessions track whether a unit of application usage ended cleanly;
check-ins report the progress of scheduled jobs. Both travel as their
own envelope item types and are never run through event processors.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from lookout.contracts.enums import CheckInStatus, SessionStatus


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass(slots=True)
class Session:
    """A release-health session.

    ``init`` is True until the session has been sent once; the backend uses
    it to count session starts.
    """

    release: str | None = None
    environment: str | None = None
    sid: str = field(default_factory=lambda: uuid.uuid4().hex)
    did: str | None = None
    status: SessionStatus = SessionStatus.OK
    errors: int = 0
    started: float = field(default_factory=time.time)
    timestamp: float = field(default_factory=time.time)
    duration: float | None = None
    init: bool = True

    def update(
        self,
        *,
        status: SessionStatus | None = None,
        errors: int | None = None,
        did: str | None = None,
    ) -> None:
        """Apply a change and bump the session timestamp."""
        if status is not None:
            self.status = status
        if errors is not None:
            self.errors = errors
        if did is not None:
            self.did = did
        self.timestamp = time.time()

    def record_error(self, *, crashed: bool) -> None:
        """Count one captured error; unhandled errors crash the session."""
        self.update(
            errors=self.errors + 1,
            status=SessionStatus.CRASHED if crashed else None,
        )

    def close(self, status: SessionStatus = SessionStatus.EXITED) -> None:
        """End the session; a crashed session keeps its status."""
        if self.status == SessionStatus.OK:
            self.status = status
        self.timestamp = time.time()
        self.duration = self.timestamp - self.started

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sid": self.sid,
            "init": self.init,
            "started": _iso(self.started),
            "timestamp": _iso(self.timestamp),
            "status": self.status.value,
            "errors": self.errors,
            "attrs": {k: v for k, v in {"release": self.release, "environment": self.environment}.items() if v},
        }
        if self.did is not None:
            payload["did"] = self.did
        if self.duration is not None:
            payload["duration"] = self.duration
        return payload


@dataclass(slots=True)
class SessionAggregateBucket:
    """Session counts for one started-at bucket (usually one minute)."""

    started: float
    exited: int = 0
    errored: int = 0
    crashed: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"started": _iso(self.started)}
        for key in ("exited", "errored", "crashed"):
            count = getattr(self, key)
            if count:
                data[key] = count
        return data


@dataclass(slots=True)
class SessionAggregates:
    """Pre-aggregated sessions, used by request-mode servers."""

    release: str | None = None
    environment: str | None = None
    aggregates: list[SessionAggregateBucket] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attrs": {k: v for k, v in {"release": self.release, "environment": self.environment}.items() if v},
            "aggregates": [a.to_dict() for a in self.aggregates],
        }


@dataclass(slots=True)
class MonitorSchedule:
    """Crontab string or fixed interval."""

    type: Literal["crontab", "interval"]
    value: str | int
    unit: Literal["minute", "hour", "day", "week", "month", "year"] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "value": self.value}
        if self.unit is not None:
            data["unit"] = self.unit
        return data


@dataclass(slots=True)
class MonitorConfig:
    """Monitor definition upserted alongside a check-in."""

    schedule: MonitorSchedule
    checkin_margin: int | None = None
    max_runtime: int | None = None
    timezone: str | None = None
    failure_issue_threshold: int | None = None
    recovery_threshold: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"schedule": self.schedule.to_dict()}
        for key in ("checkin_margin", "max_runtime", "timezone", "failure_issue_threshold", "recovery_threshold"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


@dataclass(slots=True)
class CheckIn:
    """A cron monitor check-in.

    Reuse ``check_in_id`` to close an in-progress check-in.
    """

    monitor_slug: str
    status: CheckInStatus
    check_in_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    duration: float | None = None
