# tests/property/test_wire_properties.py
"""Property tests for wire formats.

- Envelope serialization is parsed back to the same headers and payloads
- Baggage round-trips any DSC field values
- Rate-limit header parsing never raises and never shortens a cooldown
"""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from lookout.core.clock import MockClock
from lookout.core.envelope import Envelope, EnvelopeItem, parse_envelope
from lookout.core.tracing import DynamicSamplingContext
from lookout.transport.rate_limits import RateLimitTable

pytestmark = pytest.mark.slow

item_types = st.sampled_from(["event", "transaction", "session", "attachment", "check_in"])
items = st.builds(
    lambda item_type, payload: EnvelopeItem(headers={"type": item_type}, payload=payload),
    item_types,
    st.binary(max_size=200),
)
header_values = st.text(min_size=1, max_size=30)


class TestEnvelopeWire:
    @given(
        event_id=st.one_of(st.none(), st.text(alphabet="0123456789abcdef", min_size=32, max_size=32)),
        envelope_items=st.lists(items, max_size=5),
    )
    def test_serialize_then_parse(self, event_id: str | None, envelope_items: list[EnvelopeItem]) -> None:
        headers = {"event_id": event_id} if event_id is not None else {}
        envelope = Envelope(headers=headers, items=tuple(envelope_items))

        parsed = parse_envelope(envelope.serialize())

        assert parsed.event_id == event_id
        assert [(i.type, i.payload) for i in parsed.items] == [(i.type, i.payload) for i in envelope_items]


class TestBaggage:
    @given(
        release=st.one_of(st.none(), header_values),
        environment=st.one_of(st.none(), header_values),
        transaction=st.one_of(st.none(), header_values),
        sampled=st.one_of(st.none(), st.booleans()),
        sample_rate=st.one_of(st.none(), st.floats(min_value=0.0, max_value=1.0)),
    )
    def test_baggage_round_trip(
        self,
        release: str | None,
        environment: str | None,
        transaction: str | None,
        sampled: bool | None,
        sample_rate: float | None,
    ) -> None:
        dsc = DynamicSamplingContext(
            trace_id="a" * 32,
            public_key="public",
            sample_rate=sample_rate,
            sampled=sampled,
            release=release,
            environment=environment,
            transaction=transaction,
        )

        assert DynamicSamplingContext.from_baggage(dsc.to_baggage()) == dsc


class TestRateLimitHeaders:
    @given(status=st.integers(min_value=100, max_value=599), header=st.text(max_size=80))
    def test_arbitrary_headers_never_raise(self, status: int, header: str) -> None:
        table = RateLimitTable(MockClock())

        table.update(status, {"X-Sentry-Rate-Limits": header})

        assert all(seconds >= 0 for seconds in table.active.values())

    @given(first=st.integers(min_value=1, max_value=3600), second=st.integers(min_value=1, max_value=3600))
    def test_cooldown_never_shortened(self, first: int, second: int) -> None:
        table = RateLimitTable(MockClock())

        table.update(429, {"X-Sentry-Rate-Limits": f"{first}:error:org"})
        table.update(429, {"X-Sentry-Rate-Limits": f"{second}:error:org"})

        assert table.active["error"] == max(first, second)
