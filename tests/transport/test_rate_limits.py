# tests/transport/test_rate_limits.py
"""Tests for rate-limit header parsing and per-category deadlines."""

from datetime import UTC, datetime, timedelta
from email.utils import format_datetime

import pytest

from lookout.contracts.enums import DataCategory
from lookout.core.clock import MockClock
from lookout.transport.rate_limits import ALL_CATEGORIES, RateLimitTable, parse_retry_after


class TestParseRetryAfter:
    def test_seconds(self) -> None:
        assert parse_retry_after("12") == 12.0

    def test_missing_uses_default(self) -> None:
        assert parse_retry_after(None) == 60.0
        assert parse_retry_after("", default=5.0) == 5.0

    def test_garbage_uses_default(self) -> None:
        assert parse_retry_after("soon") == 60.0

    def test_http_date(self) -> None:
        when = datetime.now(UTC) + timedelta(seconds=120)

        assert 110 <= parse_retry_after(format_datetime(when, usegmt=True)) <= 121

    def test_past_date_is_zero(self) -> None:
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0


class TestRateLimitTable:
    """Deadlines per category, driven by a mock clock."""

    def test_category_limit(self) -> None:
        clock = MockClock()
        table = RateLimitTable(clock)

        limited = table.update(429, {"X-Sentry-Rate-Limits": "60:error:organization"})

        assert limited == {"error"}
        assert table.is_limited(DataCategory.ERROR)
        assert not table.is_limited(DataCategory.TRANSACTION)

    def test_limit_expires(self) -> None:
        clock = MockClock()
        table = RateLimitTable(clock)
        table.update(200, {"x-sentry-rate-limits": "60:error:key"})

        clock.advance(59.9)
        assert table.is_limited(DataCategory.ERROR)
        clock.advance(0.2)
        assert not table.is_limited(DataCategory.ERROR)

    def test_multiple_categories_and_limits(self) -> None:
        table = RateLimitTable(MockClock())

        table.update(200, {"X-Sentry-Rate-Limits": "30:transaction;span:org, 10:session:key"})

        assert table.active == {"transaction": 30.0, "span": 30.0, "session": 10.0}

    def test_empty_categories_limit_everything(self) -> None:
        table = RateLimitTable(MockClock())

        assert table.update(429, {"X-Sentry-Rate-Limits": "20::organization"}) == {ALL_CATEGORIES}
        assert table.is_limited(DataCategory.MONITOR)

    def test_429_without_header_uses_retry_after(self) -> None:
        table = RateLimitTable(MockClock())

        table.update(429, {"Retry-After": "15"})

        assert table.active == {ALL_CATEGORIES: 15.0}

    def test_429_without_any_header_uses_default(self) -> None:
        table = RateLimitTable(MockClock())

        table.update(429, {})

        assert table.active == {ALL_CATEGORIES: 60.0}

    @pytest.mark.parametrize("status", [200, 500, 503])
    def test_no_header_no_limit(self, status: int) -> None:
        table = RateLimitTable(MockClock())

        assert table.update(status, {"Retry-After": "30"}) == set()
        assert table.active == {}

    def test_shorter_limit_does_not_shorten(self) -> None:
        clock = MockClock()
        table = RateLimitTable(clock)
        table.update(429, {"X-Sentry-Rate-Limits": "60:error:org"})
        table.update(429, {"X-Sentry-Rate-Limits": "5:error:org"})

        assert table.disabled_until(DataCategory.ERROR) == 60.0

    def test_malformed_retry_value_uses_default(self) -> None:
        table = RateLimitTable(MockClock())

        table.update(429, {"X-Sentry-Rate-Limits": "abc:error:org"})

        assert table.active == {"error": 60.0}
