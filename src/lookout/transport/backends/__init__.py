"""Built-in transport backends.

Backends are discovered via pluggy hooks. The BuiltinTransportsPlugin in
this module registers the built-in HTTP backend; third-party backends
register their own plugin objects with the transport factory.
"""

from lookout.transport.backends.http import HttpTransport
from lookout.transport.hookspecs import hookimpl


class BuiltinTransportsPlugin:
    """Plugin that registers built-in transport backends."""

    @hookimpl
    def lookout_get_transports(self) -> list[type]:
        """Return built-in backend classes."""
        return [HttpTransport]


__all__ = [
    "BuiltinTransportsPlugin",
    "HttpTransport",
]
