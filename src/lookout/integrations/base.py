# src/lookout/integrations/base.py
"""Integration protocol.

An integration extends a client once, when it is added: it registers
hook listeners or event processors through the public client API.
Framework adapters (request scopes, auto-instrumentation) ship as
integrations outside this package.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from lookout.client import Client


@runtime_checkable
class Integration(Protocol):
    """Protocol for client integrations.

    Lifecycle:
        1. Client.add_integration(integration) checks ``name``
        2. setup(client) is called once per name and client
        3. The integration lives as long as the client
    """

    @property
    def name(self) -> str:
        """Unique integration name; a second integration with the same name is ignored."""
        ...

    def setup(self, client: "Client") -> None:
        """Register listeners and processors on the client."""
        ...
