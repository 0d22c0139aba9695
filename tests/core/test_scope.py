# tests/core/test_scope.py
"""Tests for Scope: setters, forking, breadcrumbs and the event merge."""

from typing import Any

import pytest

from lookout.contracts.enums import SeverityLevel
from lookout.contracts.events import Breadcrumb, Event, RequestInfo
from lookout.core.hooks import DROP, HookName, HookRegistry
from lookout.core.scope import Scope
from lookout.core.tracing import PropagationContext, Span


def _crumb(message: str) -> Breadcrumb:
    return Breadcrumb(message=message, category="test")


# =============================================================================
# Setters and fork
# =============================================================================


class TestSetters:
    """Last write wins; reads return copies."""

    def test_tags_are_stringified(self) -> None:
        scope = Scope()
        scope.set_tag("attempt", 3)
        scope.set_tags({"region": "eu", "canary": True})

        assert scope.tags == {"attempt": "3", "region": "eu", "canary": "True"}

    def test_remove_tag(self) -> None:
        scope = Scope()
        scope.set_tag("a", "1")
        scope.remove_tag("a")
        scope.remove_tag("missing")

        assert scope.tags == {}

    def test_set_context_none_removes(self) -> None:
        scope = Scope()
        scope.set_context("runtime", {"name": "cpython"})
        scope.set_context("runtime", None)

        assert scope.contexts == {}

    def test_read_access_returns_copies(self) -> None:
        scope = Scope()
        scope.set_tag("a", "1")

        scope.tags["b"] = "2"

        assert scope.tags == {"a": "1"}

    def test_clear_resets_data(self) -> None:
        scope = Scope()
        scope.set_tag("a", "1")
        scope.set_user({"id": "42"})
        scope.set_level(SeverityLevel.WARNING)
        scope.add_breadcrumb(_crumb("x"))
        old_trace = scope.propagation_context.trace_id

        scope.clear()

        assert scope.tags == {}
        assert scope.user == {}
        assert scope.level is None
        assert scope.breadcrumbs == []
        assert scope.propagation_context.trace_id != old_trace

    def test_negative_capacity_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_breadcrumbs"):
            Scope(max_breadcrumbs=-1)


class TestFork:
    """A forked scope starts as a copy and then diverges."""

    def test_fork_copies_data(self) -> None:
        parent = Scope()
        parent.set_tag("service", "api")
        parent.add_breadcrumb(_crumb("boot"))

        child = parent.fork()

        assert child.tags == {"service": "api"}
        assert [b.message for b in child.breadcrumbs] == ["boot"]

    def test_child_changes_do_not_leak_to_parent(self) -> None:
        parent = Scope()
        parent.set_tag("service", "api")
        child = parent.fork()

        child.set_tag("route", "/users")
        child.set_context("request", {"id": "r1"})
        child.add_breadcrumb(_crumb("child only"))

        assert parent.tags == {"service": "api"}
        assert parent.contexts == {}
        assert parent.breadcrumbs == []

    def test_parent_changes_after_fork_not_seen_by_child(self) -> None:
        parent = Scope()
        child = parent.fork()

        parent.set_user({"id": "1"})

        assert child.user == {}

    def test_fork_shares_trace_identity(self) -> None:
        parent = Scope()
        span = Span("root", trace_id="a" * 32, sampled=True)
        parent.set_span(span)

        child = parent.fork()

        assert child.span is span
        assert child.propagation_context is parent.propagation_context

    def test_fork_keeps_capacity(self) -> None:
        assert Scope(max_breadcrumbs=5).fork().max_breadcrumbs == 5


# =============================================================================
# Breadcrumbs
# =============================================================================


class TestBreadcrumbs:
    """Breadcrumb buffer and its hooks."""

    def test_buffer_keeps_most_recent(self) -> None:
        scope = Scope(max_breadcrumbs=3)
        for i in range(5):
            scope.add_breadcrumb(_crumb(f"m{i}"))

        assert [b.message for b in scope.breadcrumbs] == ["m2", "m3", "m4"]

    def test_zero_capacity_stores_nothing(self) -> None:
        scope = Scope(max_breadcrumbs=0)

        assert scope.add_breadcrumb(_crumb("x")) is False
        assert scope.breadcrumbs == []

    def test_before_breadcrumb_can_edit(self) -> None:
        def redact(crumb: Breadcrumb, hint: Any) -> Breadcrumb:
            crumb.message = "[redacted]"
            return crumb

        scope = Scope(before_breadcrumb=redact)
        scope.add_breadcrumb(_crumb("password=hunter2"))

        assert scope.breadcrumbs[0].message == "[redacted]"

    def test_before_breadcrumb_none_drops(self) -> None:
        scope = Scope(before_breadcrumb=lambda crumb, hint: None)

        assert scope.add_breadcrumb(_crumb("x")) is False
        assert scope.breadcrumbs == []

    def test_before_breadcrumb_failure_keeps_breadcrumb(self) -> None:
        def broken(crumb: Breadcrumb, hint: Any) -> Breadcrumb:
            raise RuntimeError("callback bug")

        scope = Scope(before_breadcrumb=broken)

        assert scope.add_breadcrumb(_crumb("kept")) is True
        assert [b.message for b in scope.breadcrumbs] == ["kept"]

    def test_hooks_fire_in_order_and_drop(self) -> None:
        hooks = HookRegistry()
        calls: list[str] = []
        hooks.on(HookName.PREPROCESS_ADD_BREADCRUMB, lambda crumb, hint=None: calls.append("preprocess"))
        hooks.on(HookName.BEFORE_ADD_BREADCRUMB, lambda crumb, hint=None: calls.append("before") or DROP)

        def callback(crumb: Breadcrumb, hint: Any) -> Breadcrumb:
            calls.append("callback")
            return crumb

        scope = Scope(hooks=hooks, before_breadcrumb=callback)

        assert scope.add_breadcrumb(_crumb("x"), {"source": "test"}) is False
        assert calls == ["preprocess", "callback", "before"]
        assert scope.breadcrumbs == []

    def test_clear_breadcrumbs(self) -> None:
        scope = Scope()
        scope.add_breadcrumb(_crumb("x"))
        scope.clear_breadcrumbs()

        assert scope.breadcrumbs == []


# =============================================================================
# Event merge
# =============================================================================


class TestApplyToEvent:
    """Scope data fills gaps; explicit event values win."""

    def test_event_values_take_precedence(self) -> None:
        scope = Scope()
        scope.set_tag("env", "scope")
        scope.set_tag("only_scope", "yes")
        scope.set_extra("k", "scope")
        scope.set_user({"id": "scope-user"})
        event = Event(tags={"env": "event"}, extra={"k": "event"})

        scope.apply_to_event(event)

        assert event.tags == {"env": "event", "only_scope": "yes"}
        assert event.extra == {"k": "event"}
        assert event.user == {"id": "scope-user"}

    def test_level_transaction_fingerprint_request_fill_gaps(self) -> None:
        scope = Scope()
        scope.set_level(SeverityLevel.WARNING)
        scope.set_transaction_name("GET /users")
        scope.set_fingerprint(["{{ default }}", "users"])
        scope.set_request(RequestInfo(method="GET", url="https://example.com/users"))
        event = Event(level=SeverityLevel.FATAL)

        scope.apply_to_event(event)

        assert event.level == SeverityLevel.FATAL
        assert event.transaction == "GET /users"
        assert event.fingerprint == ["{{ default }}", "users"]
        assert event.request is not None and event.request.method == "GET"

    def test_trace_context_from_active_span(self) -> None:
        scope = Scope()
        span = Span("work", trace_id="b" * 32, sampled=True, op="task")
        scope.set_span(span)
        event = Event()

        scope.apply_to_event(event)

        assert event.contexts["trace"]["trace_id"] == "b" * 32
        assert event.contexts["trace"]["span_id"] == span.span_id

    def test_trace_context_from_propagation_context(self) -> None:
        scope = Scope()
        scope.set_propagation_context(PropagationContext(trace_id="c" * 32, span_id="d" * 16))
        event = Event()

        scope.apply_to_event(event)

        assert event.contexts["trace"] == {"trace_id": "c" * 32, "span_id": "d" * 16}

    def test_existing_trace_context_kept(self) -> None:
        event = Event(contexts={"trace": {"trace_id": "e" * 32, "span_id": "f" * 16}})

        Scope().apply_to_event(event)

        assert event.contexts["trace"]["trace_id"] == "e" * 32

    def test_breadcrumbs_merged_and_truncated(self) -> None:
        scope = Scope(max_breadcrumbs=3)
        for i in range(3):
            scope.add_breadcrumb(_crumb(f"scope{i}"))
        event = Event(breadcrumbs=[_crumb("event0"), _crumb("event1")])

        scope.apply_to_event(event)

        assert [b.message for b in event.breadcrumbs] == ["scope0", "scope1", "scope2"]
