# tests/fixtures/__init__.py
"""Shared test doubles for lookout tests.

Available fixtures:
- RecordingTransport: In-memory backend with scripted responses
"""

from tests.fixtures.transport import RecordingTransport, response

__all__ = [
    "RecordingTransport",
    "response",
]
