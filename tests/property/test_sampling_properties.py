# tests/property/test_sampling_properties.py
"""Property tests for sampling decisions.

SAMPLING INVARIANTS:
1. A parent decision is inherited unless a listener overrides it
2. A child of a sampled-out parent is never sampled in
3. Rates 0 and 1 are absolute for new traces
"""

from __future__ import annotations

import random

import pytest
from hypothesis import given
from hypothesis import strategies as st

from lookout.core.hooks import HookName, HookRegistry, SamplingData, SamplingDecision
from lookout.core.sampling import SamplingEngine

pytestmark = pytest.mark.slow

rates = st.one_of(st.none(), st.floats(min_value=0.0, max_value=1.0))
overrides = st.lists(st.one_of(st.none(), st.booleans()), max_size=4)


def _engine(hooks: HookRegistry, rate: float | None, seed: int) -> SamplingEngine:
    return SamplingEngine(hooks, traces_sample_rate=rate, rng=random.Random(seed))


def _override_listeners(hooks: HookRegistry, decisions: list[bool | None]) -> None:
    for forced in decisions:

        def listener(data: SamplingData, record: SamplingDecision, forced: bool | None = forced) -> None:
            if forced is not None:
                record.decision = forced

        hooks.on(HookName.BEFORE_SAMPLING, listener)


class TestSamplingProperties:
    @given(rate=rates, decisions=overrides, seed=st.integers(min_value=0, max_value=2**32))
    def test_sampled_out_parent_never_flipped_in(
        self, rate: float | None, decisions: list[bool | None], seed: int
    ) -> None:
        hooks = HookRegistry()
        _override_listeners(hooks, decisions)

        assert _engine(hooks, rate, seed).decide({}, "child", parent_sampled=False, parent_context=None) is False

    @given(rate=rates, seed=st.integers(min_value=0, max_value=2**32))
    def test_parent_decision_inherited(self, rate: float | None, seed: int) -> None:
        engine = _engine(HookRegistry(), rate, seed)

        assert engine.decide({}, "child", parent_sampled=True, parent_context=None) is True
        assert engine.decide({}, "child", parent_sampled=False, parent_context=None) is False

    @given(rate=st.sampled_from([0.0, 1.0]), seed=st.integers(min_value=0, max_value=2**32))
    def test_boundary_rates_absolute(self, rate: float, seed: int) -> None:
        engine = _engine(HookRegistry(), rate, seed)

        assert all(engine.decide({}, "root", None, None) is bool(rate) for _ in range(50))

    @given(decisions=st.lists(st.booleans(), min_size=1, max_size=4), seed=st.integers(min_value=0, max_value=2**32))
    def test_last_listener_wins_for_new_traces(self, decisions: list[bool], seed: int) -> None:
        hooks = HookRegistry()
        _override_listeners(hooks, list(decisions))

        assert _engine(hooks, 0.5, seed).decide({}, "root", None, None) is decisions[-1]
