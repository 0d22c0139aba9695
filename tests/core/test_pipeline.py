# tests/core/test_pipeline.py
"""Tests for EventPipeline processing order, drops and normalization."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from lookout.contracts.enums import DataCategory, DropReason, SeverityLevel
from lookout.contracts.errors import MalformedInputError
from lookout.contracts.events import Event, EventHint, Mechanism
from lookout.core.client_reports import DropRecorder
from lookout.core.hooks import HookName, HookRegistry
from lookout.core.pipeline import BeforeSend, EventPipeline
from lookout.core.scope import Scope


def _pipeline(
    recorder: DropRecorder | None = None,
    hooks: HookRegistry | None = None,
    *,
    before_send: BeforeSend | None = None,
    before_send_transaction: BeforeSend | None = None,
    normalize_depth: int = 3,
) -> EventPipeline:
    return EventPipeline(
        hooks or HookRegistry(),
        recorder or DropRecorder(),
        normalize_depth=normalize_depth,
        environment="staging",
        release="app@2.0.0",
        server_name="web-1",
        sdk={"name": "lookout.python", "version": "0.1.0"},
        before_send=before_send,
        before_send_transaction=before_send_transaction,
    )


def _raise(error: BaseException) -> BaseException:
    try:
        raise error
    except BaseException as e:
        return e


# =============================================================================
# Input normalization
# =============================================================================


class TestInputs:
    """Every supported raw input becomes an Event."""

    def test_exception_input(self) -> None:
        hint = EventHint()
        error = _raise(ValueError("bad value"))

        event = _pipeline().process(error, hint, None)

        assert event is not None
        assert event.exception is not None
        assert event.exception.values[-1].type == "ValueError"
        assert event.exception.values[-1].mechanism == Mechanism()
        assert event.level == SeverityLevel.ERROR
        assert hint.original_exception is error

    def test_exc_info_tuple_input(self) -> None:
        error = _raise(KeyError("k"))

        event = _pipeline().process((KeyError, error, error.__traceback__), EventHint(), None)

        assert event is not None and event.exception is not None
        assert event.exception.values[-1].type == "KeyError"

    def test_hint_mechanism_used(self) -> None:
        hint = EventHint(mechanism=Mechanism(type="wsgi", handled=False))

        event = _pipeline().process(_raise(RuntimeError("x")), hint, None)

        assert event is not None and event.exception is not None
        assert event.exception.values[-1].mechanism == Mechanism(type="wsgi", handled=False)

    def test_message_input(self) -> None:
        event = _pipeline().process("hello", EventHint(), None, level=SeverityLevel.WARNING)

        assert event is not None
        assert event.message == "hello"
        assert event.level == SeverityLevel.WARNING

    def test_mapping_input(self) -> None:
        event = _pipeline().process({"message": "from dict", "tags": {"a": 1}}, EventHint(), None)

        assert event is not None
        assert event.message == "from dict"
        assert event.tags == {"a": "1"}

    def test_malformed_input_counted_and_raised(self) -> None:
        recorder = DropRecorder()

        with pytest.raises(MalformedInputError):
            _pipeline(recorder).process(object(), EventHint(), None)

        assert recorder.totals == {(DropReason.INTERNAL_SDK_ERROR, DataCategory.ERROR): 1}

    def test_malformed_mapping_rejected(self) -> None:
        with pytest.raises(MalformedInputError):
            _pipeline().process({"exception": "not a mapping"}, EventHint(), None)

    def test_event_id_assigned(self) -> None:
        hint = EventHint()

        event = _pipeline().process("m", hint, None, event_id="a" * 32)

        assert event is not None
        assert event.event_id == "a" * 32
        assert hint.event_id == "a" * 32

    def test_defaults_applied(self) -> None:
        event = _pipeline().process(Event(message="m", release="explicit"), EventHint(), None)

        assert event is not None
        assert event.environment == "staging"
        assert event.release == "explicit"
        assert event.server_name == "web-1"
        assert event.sdk == {"name": "lookout.python", "version": "0.1.0"}

    def test_transactions_get_no_default_level(self) -> None:
        event = _pipeline().process(Event(type="transaction", transaction="t"), EventHint(), None)

        assert event is not None
        assert event.level is None


# =============================================================================
# Processors
# =============================================================================


class TestProcessors:
    """Processor order and drop semantics."""

    def test_order_preprocess_client_scope_before_send(self) -> None:
        calls: list[str] = []
        hooks = HookRegistry()
        hooks.on(HookName.PREPROCESS_EVENT, lambda event, hint=None: calls.append("preprocess_event"))
        hooks.on(HookName.BEFORE_SEND_EVENT, lambda event, hint=None: calls.append("before_send_event"))

        def tracker(name: str) -> Any:
            def processor(event: Event, hint: EventHint) -> Event:
                calls.append(name)
                return event

            return processor

        pipeline = _pipeline(hooks=hooks, before_send=tracker("before_send"))
        pipeline.add_processor(tracker("client1"))
        pipeline.add_processor(tracker("client2"))
        scope = Scope()
        scope.add_event_processor(tracker("scope1"))

        pipeline.process("m", EventHint(), scope)

        assert calls == ["preprocess_event", "client1", "client2", "scope1", "before_send", "before_send_event"]

    def test_processor_none_drops_once(self) -> None:
        recorder = DropRecorder()
        later: list[Event] = []
        pipeline = _pipeline(recorder)
        pipeline.add_processor(lambda event, hint: None)
        pipeline.add_processor(lambda event, hint: later.append(event) or event)

        assert pipeline.process("m", EventHint(), None) is None
        assert later == []
        assert recorder.totals == {(DropReason.EVENT_PROCESSOR, DataCategory.ERROR): 1}

    def test_raising_processor_keeps_event(self) -> None:
        pipeline = _pipeline()

        def broken(event: Event, hint: EventHint) -> Event:
            raise RuntimeError("processor bug")

        pipeline.add_processor(broken)

        event = pipeline.process("m", EventHint(), None)

        assert event is not None
        assert event.message == "m"

    def test_wrong_return_type_keeps_event(self) -> None:
        pipeline = _pipeline()
        pipeline.add_processor(lambda event, hint: "not an event")

        assert pipeline.process("m", EventHint(), None) is not None

    def test_non_callable_processor_rejected(self) -> None:
        with pytest.raises(TypeError):
            _pipeline().add_processor(42)  # type: ignore[arg-type]

    def test_before_send_none_drops(self) -> None:
        recorder = DropRecorder()

        event = _pipeline(recorder, before_send=lambda event, hint: None).process("m", EventHint(), None)

        assert event is None
        assert recorder.totals == {(DropReason.BEFORE_SEND, DataCategory.ERROR): 1}

    def test_before_send_not_called_for_transactions(self) -> None:
        recorder = DropRecorder()
        pipeline = _pipeline(
            recorder,
            before_send=lambda event, hint: None,
            before_send_transaction=lambda event, hint: None,
        )

        assert pipeline.process(Event(message="error"), EventHint(), None) is None
        assert pipeline.process(Event(type="transaction"), EventHint(), None) is None
        assert recorder.totals == {
            (DropReason.BEFORE_SEND, DataCategory.ERROR): 1,
            (DropReason.BEFORE_SEND, DataCategory.TRANSACTION): 1,
        }

    def test_scope_applied_before_processors(self) -> None:
        scope = Scope()
        scope.set_tag("route", "/users")
        seen: list[dict[str, str]] = []
        pipeline = _pipeline()
        pipeline.add_processor(lambda event, hint: seen.append(dict(event.tags)) or event)

        pipeline.process("m", EventHint(), scope)

        assert seen == [{"route": "/users"}]


# =============================================================================
# Normalization
# =============================================================================


class TestNormalization:
    """Finalized events are JSON-serializable."""

    def test_processor_added_values_normalized(self) -> None:
        pipeline = _pipeline()

        def add_object(event: Event, hint: EventHint) -> Event:
            event.extra["obj"] = object.__new__(type("Opaque", (), {"__repr__": lambda self: "<Opaque>"}))
            event.extra["nan"] = float("nan")
            return event

        pipeline.add_processor(add_object)

        event = pipeline.process("m", EventHint(), None)

        assert event is not None
        assert event.extra == {"obj": "<Opaque>", "nan": "nan"}

    def test_extra_depth_limited(self) -> None:
        event = _pipeline(normalize_depth=1).process(Event(extra={"a": {"b": {"c": 1}}}), EventHint(), None)

        assert event is not None
        assert event.extra == {"a": {"b": "[MaxDepth]"}}

    def test_child_span_data_normalized(self) -> None:
        recorder = DropRecorder()
        started = datetime(2024, 1, 1, tzinfo=UTC)
        transaction = Event(
            type="transaction",
            transaction="GET /orders",
            spans=[
                {"span_id": "b" * 16, "description": "db.query", "data": {"started": started, "ratio": float("inf")}},
                {"span_id": "c" * 16, "description": "no data"},
            ],
        )

        event = _pipeline(recorder).process(transaction, EventHint(), None)

        assert event is not None
        assert event.spans[0]["data"] == {"started": repr(started), "ratio": "inf"}
        assert "data" not in event.spans[1]
        assert recorder.totals == {}
