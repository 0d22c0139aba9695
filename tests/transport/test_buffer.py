# tests/transport/test_buffer.py
"""Tests for the transport FIFO."""

import pytest

from lookout.core.envelope import Envelope
from lookout.transport.buffer import EnvelopeBuffer, QueueEntry


def _entry(n: int) -> QueueEntry:
    return QueueEntry(envelope=Envelope(headers={"event_id": f"{n:032x}"}))


class TestEnvelopeBuffer:
    def test_fifo_order(self) -> None:
        buffer = EnvelopeBuffer()
        for i in range(3):
            buffer.append(_entry(i))

        assert [buffer.popleft().envelope.event_id for _ in range(3)] == [f"{i:032x}" for i in range(3)]

    def test_popleft_empty_raises(self) -> None:
        with pytest.raises(IndexError):
            EnvelopeBuffer().popleft()

    def test_evict_oldest(self) -> None:
        buffer = EnvelopeBuffer()
        first, second = _entry(1), _entry(2)
        buffer.append(first)
        buffer.append(second)

        assert buffer.evict_oldest() is first
        assert len(buffer) == 1
        assert buffer.evicted_count == 1

    def test_evict_empty_returns_none(self) -> None:
        buffer = EnvelopeBuffer()

        assert buffer.evict_oldest() is None
        assert buffer.evicted_count == 0

    def test_remove_if_keeps_order(self) -> None:
        buffer = EnvelopeBuffer()
        entries = [_entry(i) for i in range(5)]
        for entry in entries:
            buffer.append(entry)

        removed = buffer.remove_if(lambda e: entries.index(e) % 2 == 0)

        assert removed == [entries[0], entries[2], entries[4]]
        assert list(buffer) == [entries[1], entries[3]]

    def test_drain(self) -> None:
        buffer = EnvelopeBuffer()
        buffer.append(_entry(1))

        assert len(buffer.drain()) == 1
        assert len(buffer) == 0

    def test_iteration_is_snapshot(self) -> None:
        buffer = EnvelopeBuffer()
        buffer.append(_entry(1))

        for _ in buffer:
            buffer.append(_entry(2))

        assert len(buffer) == 2

    def test_new_entry_defaults(self) -> None:
        entry = _entry(1)

        assert entry.attempts == 0
        assert not entry.future.done()
