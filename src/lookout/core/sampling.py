# src/lookout/core/sampling.py
"""Trace sampling decisions.

Decision order:
1. A parent decision, when present, is inherited so a whole trace is kept
   or dropped together.
2. Otherwise a configured ``traces_sampler`` callable returns a rate (or a
   bool), falling back to ``traces_sample_rate``. A uniform draw below the
   rate samples in.
3. The candidate is passed to ``before_sampling`` listeners through a
   mutable SamplingDecision; the last writer wins.

Consistency invariant:
    A child of a sampled-out parent is never sampled in. Listener attempts
    to flip such a child are ignored and logged. All other listener
    overrides are absolute, including overriding a rate of 0 or 1.

The decision is made once, at span creation, and never changes.
"""

from __future__ import annotations

import math
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from lookout.core.hooks import HookName, HookRegistry, SamplingData, SamplingDecision

logger = structlog.get_logger(__name__)

TracesSampler = Callable[[SamplingData], float | bool | None]


@dataclass(frozen=True, slots=True)
class SamplingResult:
    """Final decision plus the rate it was drawn against (None if inherited or overridden)."""

    sampled: bool
    sample_rate: float | None = None


def parse_sample_rate(rate: Any) -> float | None:
    """Validate a sample rate.

    Returns:
        The rate as a float in [0, 1], or None if it is not a valid rate.
    """
    if isinstance(rate, bool):
        return 1.0 if rate else 0.0
    if not isinstance(rate, int | float) or math.isnan(rate) or not 0.0 <= rate <= 1.0:
        return None
    return float(rate)


class SamplingEngine:
    """Computes keep/drop decisions for traces.

    Example:
        >>> engine = SamplingEngine(hooks, traces_sample_rate=0.25)
        >>> engine.decide({}, "GET /users", parent_sampled=None, parent_context=None)
        False
    """

    def __init__(
        self,
        hooks: HookRegistry,
        *,
        traces_sample_rate: float | None = None,
        traces_sampler: TracesSampler | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            hooks: Registry used to emit before_sampling
            traces_sample_rate: Probability of keeping a new trace; None
                disables tracing unless a sampler is configured
            traces_sampler: Callable returning a rate for each new trace;
                takes precedence over traces_sample_rate
            rng: Random source; injectable for deterministic tests
        """
        self._hooks = hooks
        self._traces_sample_rate = traces_sample_rate
        self._traces_sampler = traces_sampler
        self._rng = rng or random.Random()

    @property
    def tracing_enabled(self) -> bool:
        return self._traces_sampler is not None or self._traces_sample_rate is not None

    def decide(
        self,
        span_attributes: Mapping[str, Any],
        span_name: str,
        parent_sampled: bool | None,
        parent_context: Mapping[str, Any] | None,
    ) -> bool:
        """Decide whether a new span (and its trace) is sampled."""
        return self.sample(span_attributes, span_name, parent_sampled, parent_context).sampled

    def sample(
        self,
        span_attributes: Mapping[str, Any],
        span_name: str,
        parent_sampled: bool | None,
        parent_context: Mapping[str, Any] | None,
    ) -> SamplingResult:
        """Like decide(), but also report the rate the decision was drawn against."""
        data = SamplingData(
            span_attributes=dict(span_attributes),
            span_name=span_name,
            parent_sampled=parent_sampled,
            parent_context=dict(parent_context) if parent_context is not None else None,
        )

        if parent_sampled is not None:
            candidate = SamplingResult(sampled=parent_sampled)
        else:
            candidate = self._sample_new_trace(data)

        record = SamplingDecision(decision=candidate.sampled)
        self._hooks.emit(HookName.BEFORE_SAMPLING, data, record)

        if record.decision == candidate.sampled:
            return candidate

        if parent_sampled is False and record.decision:
            logger.debug(
                "Sampling override ignored",
                span_name=span_name,
                reason="parent trace was sampled out",
            )
            return candidate

        logger.debug("Sampling decision overridden", span_name=span_name, decision=record.decision)
        return SamplingResult(sampled=bool(record.decision))

    def _sample_new_trace(self, data: SamplingData) -> SamplingResult:
        if self._traces_sampler is not None:
            try:
                raw_rate: Any = self._traces_sampler(data)
            except Exception as e:
                logger.warning("Traces sampler failed", span_name=data.span_name, error=str(e))
                return SamplingResult(sampled=False)
        else:
            raw_rate = self._traces_sample_rate

        if raw_rate is None:
            return SamplingResult(sampled=False)

        rate = parse_sample_rate(raw_rate)
        if rate is None:
            logger.warning("Invalid sample rate, sampling out", span_name=data.span_name, rate=repr(raw_rate))
            return SamplingResult(sampled=False)

        # random() is in [0, 1): rate 0 never samples in, rate 1 always does
        return SamplingResult(sampled=self._rng.random() < rate, sample_rate=rate)
