"""Client integrations.

Available integrations:
- DedupeIntegration: Drop back-to-back duplicate error events
"""

from lookout.integrations.base import Integration
from lookout.integrations.dedupe import DedupeIntegration

__all__ = [
    "DedupeIntegration",
    "Integration",
]
