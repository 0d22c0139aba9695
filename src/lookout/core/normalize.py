# src/lookout/core/normalize.py
"""Best-effort conversion of arbitrary Python values into JSON-safe data.

Extra data and contexts come straight from application code and may hold
anything: cyclic structures, ORM objects, NaN, objects whose __repr__
raises. normalize() never raises for such values; it truncates depth and
breadth, replaces cycles with a marker, and stringifies what JSON cannot
carry. Only genuinely unusable input (handled by the pipeline) turns into
a MalformedInputError.
"""

from __future__ import annotations

import linecache
import math
import sys
import traceback
from collections.abc import Mapping, Sequence
from types import TracebackType
from typing import Any

from lookout.contracts.defaults import INTERNAL_DEFAULTS
from lookout.contracts.errors import MalformedInputError
from lookout.contracts.events import ExceptionList, ExceptionValue, Mechanism, StackFrame

CIRCULAR_MARKER = "[Circular]"
DEPTH_MARKER = "[MaxDepth]"
UNREPRESENTABLE_MARKER = "[Unrepresentable]"

_MAX_BREADTH = int(INTERNAL_DEFAULTS["normalize"]["max_breadth"])
_MAX_STRING = int(INTERNAL_DEFAULTS["normalize"]["max_string_length"])

ExcInfo = tuple[type[BaseException], BaseException, TracebackType | None]


def _safe_repr(value: Any) -> str:
    try:
        text = repr(value)
    except Exception:
        return UNREPRESENTABLE_MARKER
    return _truncate(text)


def _truncate(text: str) -> str:
    if len(text) > _MAX_STRING:
        return text[: _MAX_STRING - 3] + "..."
    return text


def normalize(value: Any, depth: int = 3) -> Any:
    """Return a JSON-serializable copy of value.

    Args:
        value: Any Python value
        depth: How many container levels to keep; deeper containers are
            replaced by a marker

    Returns:
        Nested dicts/lists of str, int, float, bool and None.
    """
    return _normalize(value, depth, set())


def _normalize(value: Any, depth: int, seen: set[int]) -> Any:
    if value is None or isinstance(value, bool | int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, str):
        return _truncate(value)
    if isinstance(value, bytes):
        return _truncate(value.decode("utf-8", errors="replace"))

    if isinstance(value, Mapping | list | tuple | set | frozenset):
        if id(value) in seen:
            return CIRCULAR_MARKER
        if depth <= 0:
            return DEPTH_MARKER
        seen.add(id(value))
        try:
            if isinstance(value, Mapping):
                result: Any = {}
                for i, (k, v) in enumerate(value.items()):
                    if i >= _MAX_BREADTH:
                        break
                    key = k if isinstance(k, str) else _safe_repr(k)
                    result[key] = _normalize(v, depth - 1, seen)
                return result
            items: Sequence[Any] = list(value)
            return [_normalize(v, depth - 1, seen) for v in items[:_MAX_BREADTH]]
        finally:
            seen.discard(id(value))

    return _safe_repr(value)


def exc_info_from_error(error: Any) -> ExcInfo:
    """Accept an exception instance or an exc_info tuple.

    Raises:
        MalformedInputError: If error is neither.
    """
    if isinstance(error, BaseException):
        return type(error), error, error.__traceback__
    if (
        isinstance(error, tuple)
        and len(error) == 3
        and isinstance(error[1], BaseException)
        and isinstance(error[0], type)
    ):
        return error[0], error[1], error[2]
    raise MalformedInputError(f"Cannot capture {type(error).__name__} as an exception")


def current_exc_info() -> ExcInfo | None:
    """The exception currently being handled, if any."""
    exc = sys.exception()
    if exc is None:
        return None
    return type(exc), exc, exc.__traceback__


def _frames_from_traceback(tb: TracebackType | None) -> list[StackFrame]:
    frames: list[StackFrame] = []
    for frame, lineno in traceback.walk_tb(tb):
        code = frame.f_code
        module = frame.f_globals.get("__name__")
        context_line = linecache.getline(code.co_filename, lineno).strip() or None
        frames.append(
            StackFrame(
                filename=code.co_filename.rsplit("/", 1)[-1],
                function=code.co_name,
                lineno=lineno,
                module=module if isinstance(module, str) else None,
                abs_path=code.co_filename,
                context_line=context_line,
                in_app=not ("site-packages" in code.co_filename or code.co_filename.startswith("<frozen")),
            )
        )
    return frames


def _exception_value(exc: BaseException, tb: TracebackType | None, mechanism: Mechanism | None) -> ExceptionValue:
    exc_type = type(exc)
    module = exc_type.__module__
    try:
        value = str(exc)
    except Exception:
        value = UNREPRESENTABLE_MARKER
    return ExceptionValue(
        type=exc_type.__qualname__,
        value=_truncate(value),
        module=None if module == "builtins" else module,
        mechanism=mechanism,
        frames=_frames_from_traceback(tb),
    )


def exceptions_from_error(error: Any, mechanism: Mechanism | None = None) -> ExceptionList:
    """Walk the cause/context chain of an exception.

    The chain is ordered oldest cause first, captured exception last. Only
    the captured exception carries the mechanism. Cycles in the chain are
    cut.

    Raises:
        MalformedInputError: If error is not an exception or exc_info tuple.
    """
    _, exc, tb = exc_info_from_error(error)

    chain: list[ExceptionValue] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    current_tb = tb
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        chain.append(_exception_value(current, current_tb, mechanism if current is exc else None))
        if current.__cause__ is not None:
            current = current.__cause__
        elif current.__context__ is not None and not current.__suppress_context__:
            current = current.__context__
        else:
            current = None
        current_tb = current.__traceback__ if current is not None else None

    chain.reverse()
    return ExceptionList(values=chain)
