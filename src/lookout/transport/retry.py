# src/lookout/transport/retry.py
"""Delivery retry policy with tenacity integration.

Only DeliveryFailure (network errors and 5xx responses) is retried.
Backoff is exponential with jitter. A shutdown event stops retrying
immediately and interrupts the backoff sleep, so close() never waits out
a long backoff.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential_jitter,
)

from lookout.contracts.errors import DeliveryFailure

if TYPE_CHECKING:
    from lookout.core.config import TransportSettings


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Configuration for delivery retries.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 0.5  # seconds
    max_delay: float = 30.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Single attempt, no backoff."""
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: TransportSettings) -> RetryConfig:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=1.0,  # Fixed jitter, not exposed in settings
            exponential_base=settings.exponential_base,
        )


def build_retrying(
    config: RetryConfig,
    *,
    shutdown: threading.Event,
    sleep: Callable[[float], None] | None = None,
) -> Retrying:
    """Create a tenacity Retrying for one delivery.

    Args:
        config: Retry configuration
        shutdown: Set by close(); stops further attempts
        sleep: Backoff sleep (default: waits on shutdown, so close()
            interrupts it)

    Returns:
        Retrying that re-raises the last DeliveryFailure when exhausted.
    """
    return Retrying(
        stop=stop_after_attempt(config.max_attempts) | stop_when_event_set(shutdown),
        wait=wait_exponential_jitter(
            multiplier=config.base_delay,
            max=config.max_delay,
            exp_base=config.exponential_base,
            jitter=config.jitter,
        ),
        retry=retry_if_exception_type(DeliveryFailure),
        sleep=sleep if sleep is not None else shutdown.wait,
        reraise=True,
    )
