# src/lookout/transport/factory.py
"""Factory functions for creating a TransportManager from configuration.

This module provides the glue between TransportSettings and the runtime
TransportManager. It handles:
1. Discovering backend classes via transport pluggy hooks
2. Instantiating and configuring the selected backend
3. Creating the TransportManager around it

Usage:
    from lookout.transport.factory import create_transport_manager

    manager = create_transport_manager(settings.transport, dsn=settings.dsn, recorder=recorder)
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from lookout.contracts.errors import TransportConfigurationError
from lookout.core.client_reports import DropRecorder
from lookout.core.clock import Clock
from lookout.core.config import TransportSettings
from lookout.transport.backends import BuiltinTransportsPlugin
from lookout.transport.hookspecs import PROJECT_NAME, LookoutTransportSpec
from lookout.transport.manager import TransportManager
from lookout.transport.protocols import TransportProtocol
from lookout.transport.retry import RetryConfig

logger = structlog.get_logger(__name__)


def _resolve_transport_name(transport_class: type[TransportProtocol]) -> str:
    """Read the backend name from the class-level ``_name`` attribute.

    Raises:
        TransportConfigurationError: If ``_name`` is missing or not a
            non-empty string.
    """
    name = getattr(transport_class, "_name", None)
    if type(name) is not str or name == "":
        raise TransportConfigurationError(
            getattr(transport_class, "__name__", repr(transport_class)),
            f"Transport class attribute _name must be a non-empty string, got {name!r}",
        )
    return name


def discover_transport_registry(
    transport_plugins: Iterable[Any] = (),
) -> dict[str, type[TransportProtocol]]:
    """Discover transport backends via pluggy hooks.

    Registers the built-in backends plus any plugin objects provided by the
    caller, then calls ``lookout_get_transports`` hooks to build the
    name->class registry.

    Args:
        transport_plugins: Additional plugin objects implementing
            ``lookout_get_transports``.

    Returns:
        Mapping of backend name to backend class.

    Raises:
        TransportConfigurationError: If plugin registration fails, backend
            names are invalid, or duplicate names are discovered.
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(LookoutTransportSpec)

    for plugin in [BuiltinTransportsPlugin(), *list(transport_plugins)]:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # PluginValidationError: hook spec mismatch
            # ValueError: duplicate plugin object or plugin name
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise TransportConfigurationError(
                "transport_plugins",
                f"Invalid transport plugin {type(plugin).__name__}: {e}",
            ) from e

    registry: dict[str, type[TransportProtocol]] = {}
    for hook_impl in plugin_manager.hook.lookout_get_transports.get_hookimpls():
        plugin_name = type(hook_impl.plugin).__name__
        try:
            transports = hook_impl.function()
        except Exception as e:
            raise TransportConfigurationError(
                "transport_plugins",
                f"Transport plugin {plugin_name} failed in lookout_get_transports: {e}",
            ) from e

        if not isinstance(transports, list | tuple):
            raise TransportConfigurationError(
                "transport_plugins",
                f"lookout_get_transports in plugin {plugin_name} returned {type(transports).__name__}; expected list of transport classes",
            )

        for transport_class in transports:
            name = _resolve_transport_name(transport_class)
            if name in registry:
                raise TransportConfigurationError(
                    name,
                    f"Duplicate transport name '{name}' discovered: {registry[name].__name__} and {transport_class.__name__}",
                )
            registry[name] = transport_class

    return registry


def create_transport(
    settings: TransportSettings,
    *,
    dsn: str | None,
    sdk_client: str | None = None,
    transport_plugins: Iterable[Any] = (),
) -> TransportProtocol:
    """Instantiate and configure the backend named by settings.backend.

    Raises:
        TransportConfigurationError: If the backend is unknown or rejects
            its configuration.
    """
    registry = discover_transport_registry(transport_plugins)
    try:
        transport_class = registry[settings.backend]
    except KeyError:
        raise TransportConfigurationError(
            backend_name=settings.backend,
            message=f"Unknown transport. Available transports: {sorted(registry)}",
        ) from None

    config: dict[str, Any] = {
        **settings.options,
        "dsn": dsn,
        "timeout_seconds": settings.request_timeout_seconds,
    }
    if sdk_client is not None:
        config["sdk_client"] = sdk_client

    transport = transport_class()
    transport.configure(config)
    logger.debug("Transport configured", backend=settings.backend, options_keys=sorted(settings.options))
    return transport


def create_transport_manager(
    settings: TransportSettings,
    *,
    recorder: DropRecorder,
    dsn: str | None = None,
    backend: TransportProtocol | None = None,
    sdk_client: str | None = None,
    transport_plugins: Iterable[Any] = (),
    clock: Clock | None = None,
) -> TransportManager:
    """Create a TransportManager from settings.

    Args:
        settings: Transport section of ClientSettings
        recorder: Drop accounting shared with the client
        dsn: Client key URL passed to the backend
        backend: Already-configured backend; skips discovery when given
        sdk_client: ``name/version`` for backend auth headers
        transport_plugins: Extra plugin objects providing
            ``lookout_get_transports``
        clock: Clock for rate-limit deadlines

    Raises:
        TransportConfigurationError: If backend discovery or configuration fails.
    """
    if backend is None:
        backend = create_transport(settings, dsn=dsn, sdk_client=sdk_client, transport_plugins=transport_plugins)

    return TransportManager(
        backend,
        recorder,
        buffer_size=settings.buffer_size,
        max_concurrency=settings.max_concurrency,
        overflow_policy=settings.overflow_policy,
        retry=RetryConfig.from_settings(settings),
        clock=clock,
    )
