# src/lookout/transport/hookspecs.py
"""pluggy hook specifications for transport backends.

Backends implement these hooks to register themselves with the client.
The transport factory calls them when a client is created to discover
available backends.

Usage (implementing a backend plugin):
    from lookout.transport.hookspecs import hookimpl

    class MyTransportPlugin:
        @hookimpl
        def lookout_get_transports(self):
            return [MyTransport]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from lookout.transport.protocols import TransportProtocol

PROJECT_NAME = "lookout"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class LookoutTransportSpec:
    """Hook specifications for transport backend plugins."""

    @hookspec
    def lookout_get_transports(self) -> list[type["TransportProtocol"]]:  # type: ignore[empty-body]
        """Return transport backend classes.

        Returns:
            List of backend classes (not instances) that implement
            TransportProtocol
        """
