# tests/integrations/test_dedupe.py
"""Tests for DedupeIntegration."""

from lookout.contracts.events import Event, EventHint, ExceptionList, ExceptionValue, StackFrame
from lookout.integrations.dedupe import DedupeIntegration


def _error_event(value: str = "bad", lineno: int = 10) -> Event:
    frame = StackFrame(filename="app.py", function="handler", lineno=lineno)
    return Event(exception=ExceptionList(values=[ExceptionValue(type="ValueError", value=value, frames=[frame])]))


class TestDedupeIntegration:
    def test_same_exception_object_dropped(self) -> None:
        dedupe = DedupeIntegration()
        error = ValueError("bad")

        assert dedupe.process_event(_error_event(), EventHint(original_exception=error)) is not None
        assert dedupe.process_event(Event(message="other"), EventHint(original_exception=error)) is None

    def test_matching_exception_chain_dropped(self) -> None:
        dedupe = DedupeIntegration()

        assert dedupe.process_event(_error_event(), EventHint()) is not None
        assert dedupe.process_event(_error_event(), EventHint()) is None

    def test_different_frames_kept(self) -> None:
        dedupe = DedupeIntegration()

        dedupe.process_event(_error_event(lineno=10), EventHint())

        assert dedupe.process_event(_error_event(lineno=11), EventHint()) is not None

    def test_different_fingerprint_kept(self) -> None:
        dedupe = DedupeIntegration()
        first = _error_event()
        second = _error_event()
        second.fingerprint = ["custom"]

        dedupe.process_event(first, EventHint())

        assert dedupe.process_event(second, EventHint()) is not None

    def test_repeated_message_dropped(self) -> None:
        dedupe = DedupeIntegration()

        assert dedupe.process_event(Event(message="disk full"), EventHint()) is not None
        assert dedupe.process_event(Event(message="disk full"), EventHint()) is None
        assert dedupe.process_event(Event(message="disk almost full"), EventHint()) is not None

    def test_only_consecutive_duplicates_dropped(self) -> None:
        dedupe = DedupeIntegration()

        dedupe.process_event(Event(message="a"), EventHint())
        dedupe.process_event(Event(message="b"), EventHint())

        assert dedupe.process_event(Event(message="a"), EventHint()) is not None

    def test_transactions_never_deduplicated(self) -> None:
        dedupe = DedupeIntegration()
        transaction = Event(type="transaction", transaction="GET /")

        assert dedupe.process_event(transaction, EventHint()) is transaction
        assert dedupe.process_event(transaction, EventHint()) is transaction
