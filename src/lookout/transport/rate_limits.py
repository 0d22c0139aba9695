# src/lookout/transport/rate_limits.py
"""Per-category rate-limit deadlines issued by the backend.

Header formats:
    ``X-Sentry-Rate-Limits: <retry_after>:<categories>:<scope>[:...], ...``
        categories is a ``;``-separated list of data categories; an empty
        list limits every category.
    ``Retry-After: <seconds | HTTP-date>``
        Used only for 429 responses without X-Sentry-Rate-Limits; limits
        every category. A 429 with neither header falls back to a default
        cooldown.

The table is a hard client-side circuit breaker: while a deadline is in
the future, items of that category are discarded without a network call.

Thread Safety:
    NOT thread-safe. The TransportManager guards the table with its
    condition lock.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import structlog

from lookout.contracts.defaults import INTERNAL_DEFAULTS
from lookout.contracts.enums import DataCategory
from lookout.core.clock import DEFAULT_CLOCK, Clock

logger = structlog.get_logger(__name__)

ALL_CATEGORIES = "all"

_DEFAULT_RETRY_AFTER = float(INTERNAL_DEFAULTS["transport"]["default_retry_after_seconds"])


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def parse_retry_after(value: str | None, default: float = _DEFAULT_RETRY_AFTER) -> float:
    """Seconds to wait from a Retry-After value (delta seconds or HTTP date)."""
    if not value:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


class RateLimitTable:
    """Maps data categories to the monotonic time their cooldown ends.

    Example:
        >>> table = RateLimitTable()
        >>> table.update(429, {"X-Sentry-Rate-Limits": "60:error:organization"})
        {'error'}
        >>> table.is_limited(DataCategory.ERROR)
        True
        >>> table.is_limited(DataCategory.TRANSACTION)
        False
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or DEFAULT_CLOCK
        self._deadlines: dict[str, float] = {}

    def update(self, status_code: int, headers: Mapping[str, str]) -> set[str]:
        """Apply rate-limit headers from a response.

        Args:
            status_code: HTTP status of the response
            headers: Response headers (any case)

        Returns:
            Names of the categories limited by this response ("all" for
            every category); empty if the response carried no limit.
        """
        now = self._clock.monotonic()
        limited: set[str] = set()

        raw_limits = _header(headers, "x-sentry-rate-limits")
        if raw_limits:
            for limit in raw_limits.split(","):
                fields = limit.strip().split(":")
                if not fields or not fields[0]:
                    continue
                try:
                    retry_after = float(fields[0])
                except ValueError:
                    retry_after = _DEFAULT_RETRY_AFTER
                categories = fields[1].split(";") if len(fields) > 1 and fields[1] else [ALL_CATEGORIES]
                for category in categories:
                    if category:
                        self._extend(category, now + retry_after)
                        limited.add(category)
        elif status_code == 429:
            retry_after = parse_retry_after(_header(headers, "retry-after"))
            self._extend(ALL_CATEGORIES, now + retry_after)
            limited.add(ALL_CATEGORIES)

        if limited:
            logger.warning(
                "Backend rate limit applied",
                status_code=status_code,
                categories=sorted(limited),
            )
        return limited

    def _extend(self, category: str, deadline: float) -> None:
        # A shorter limit never shortens an existing cooldown
        self._deadlines[category] = max(deadline, self._deadlines.get(category, 0.0))

    def disabled_until(self, category: DataCategory | str) -> float:
        """Monotonic deadline for a category (0.0 if not limited)."""
        return max(self._deadlines.get(str(category), 0.0), self._deadlines.get(ALL_CATEGORIES, 0.0))

    def is_limited(self, category: DataCategory | str) -> bool:
        return self.disabled_until(category) > self._clock.monotonic()

    @property
    def active(self) -> dict[str, float]:
        """Remaining cooldown seconds per limited category."""
        now = self._clock.monotonic()
        return {category: round(deadline - now, 3) for category, deadline in self._deadlines.items() if deadline > now}
