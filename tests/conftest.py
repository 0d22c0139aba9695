# tests/conftest.py
"""Shared test fixtures and helpers.

Fixtures:
- recorder: Fresh DropRecorder
- clock: MockClock starting at 0.0
- backend: RecordingTransport answering 200
- make_client: Factory for Clients wired to a RecordingTransport; every
  client it creates is closed at teardown

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
import random
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from lookout.client import Client
from lookout.core.client_reports import DropRecorder
from lookout.core.clock import MockClock
from lookout.core.config import ClientSettings, TransportSettings
from tests.fixtures.transport import RecordingTransport

TEST_DSN = "https://public@o1.ingest.example.com/42"


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def recorder() -> DropRecorder:
    return DropRecorder()


@pytest.fixture
def clock() -> MockClock:
    return MockClock(start=0.0)


@pytest.fixture
def backend() -> RecordingTransport:
    return RecordingTransport()


def make_settings(**overrides: Any) -> ClientSettings:
    """ClientSettings with a test DSN and a no-backoff transport."""
    transport = overrides.pop("transport", None) or TransportSettings(initial_delay_seconds=0.001, max_delay_seconds=0.001)
    values: dict[str, Any] = {"dsn": TEST_DSN, "release": "app@1.0.0", "transport": transport}
    values.update(overrides)
    return ClientSettings(**values)


@pytest.fixture
def make_client(clock: MockClock) -> Iterator[Callable[..., tuple[Client, RecordingTransport]]]:
    """Factory returning (client, backend) pairs; clients are closed at teardown."""
    created: list[Client] = []

    def factory(
        backend: RecordingTransport | None = None,
        *,
        seed: int = 0,
        client_kwargs: dict[str, Any] | None = None,
        **settings_overrides: Any,
    ) -> tuple[Client, RecordingTransport]:
        backend = backend or RecordingTransport()
        client = Client(
            make_settings(**settings_overrides),
            transport=backend,
            rng=random.Random(seed),
            clock=clock,
            **(client_kwargs or {}),
        )
        created.append(client)
        return client, backend

    yield factory

    for client in created:
        client.close(timeout=2.0)
