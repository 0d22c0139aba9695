# src/lookout/contracts/defaults.py
"""Default value registry for values NOT exposed in settings.

These are implementation details that users shouldn't need to configure.
They are collected here so there is a single place to see which values
the runtime hardcodes.
"""

from typing import Final

INTERNAL_DEFAULTS: Final[dict[str, dict[str, int | float | bool | str]]] = {
    "sdk": {
        "name": "lookout.python",
        "version": "0.1.0",
    },
    "transport": {
        # Cooldown applied when a 429 carries no usable rate-limit header
        "default_retry_after_seconds": 60.0,
        # How long close() waits for worker threads after a successful drain
        "worker_join_seconds": 1.0,
        "content_type": "application/x-sentry-envelope",
    },
    "normalize": {
        # Maximum items kept per container during normalization
        "max_breadth": 1000,
        # Maximum string length kept for a normalized value
        "max_string_length": 1024,
    },
    "tracing": {
        # Propagation DSCs remembered per trace id across forked scopes
        "dsc_cache_size": 1000,
    },
    "logging": {
        # Drop warnings are aggregated: one log line per this many drops
        "drop_log_interval": 100,
    },
}
