# src/lookout/transport/backends/http.py
"""HTTP transport backend.

POSTs serialized envelopes to the DSN's envelope endpoint with an
``X-Sentry-Auth`` header. Uses one shared httpx.Client for connection
pooling; httpx.Client is thread-safe, so concurrent workers share it.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from lookout.contracts.defaults import INTERNAL_DEFAULTS
from lookout.contracts.errors import DsnError, TransportConfigurationError
from lookout.core.dsn import Dsn
from lookout.transport.protocols import TransportRequest, TransportResponse

logger = structlog.get_logger(__name__)


class HttpTransport:
    """Deliver envelopes over HTTP(S) with httpx.

    Configuration options:
        dsn: Client key URL (required)
        timeout_seconds: Per-request timeout (default 30.0)
        sdk_client: ``name/version`` sent in the auth header
        headers: Extra request headers (mapping of str to str)
        proxy: Proxy URL passed to httpx
        client: Pre-built httpx.Client (for tests with httpx.MockTransport);
            it is not closed by close()

    Example configuration:
        transport:
          backend: http
          options:
            proxy: http://proxy.internal:3128
    """

    _name = "http"

    def __init__(self) -> None:
        self._dsn: Dsn | None = None
        self._client: httpx.Client | None = None
        self._owns_client = False
        self._headers: dict[str, str] = {}
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def endpoint(self) -> str | None:
        return self._dsn.envelope_endpoint if self._dsn is not None else None

    def configure(self, config: dict[str, Any]) -> None:
        """Configure from the DSN, timeout and backend options.

        Raises:
            TransportConfigurationError: If the DSN or an option is invalid
        """
        raw_dsn = config.get("dsn")
        if not isinstance(raw_dsn, str) or not raw_dsn:
            raise TransportConfigurationError(self._name, "'dsn' is required for the http transport")
        try:
            self._dsn = Dsn.parse(raw_dsn)
        except DsnError as e:
            raise TransportConfigurationError(self._name, str(e)) from e

        timeout = config.get("timeout_seconds", 30.0)
        if isinstance(timeout, bool) or not isinstance(timeout, int | float) or timeout <= 0:
            raise TransportConfigurationError(self._name, f"'timeout_seconds' must be a positive number, got {timeout!r}")

        extra_headers = config.get("headers", {})
        if not isinstance(extra_headers, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in extra_headers.items()
        ):
            raise TransportConfigurationError(self._name, "'headers' must be a mapping of strings")

        sdk = INTERNAL_DEFAULTS["sdk"]
        sdk_client = str(config.get("sdk_client", f"{sdk['name']}/{sdk['version']}"))
        self._headers = {
            **extra_headers,
            "User-Agent": sdk_client,
            "X-Sentry-Auth": self._dsn.auth_header(sdk_client),
        }

        injected = config.get("client")
        if injected is not None:
            if not isinstance(injected, httpx.Client):
                raise TransportConfigurationError(
                    self._name, f"'client' must be an httpx.Client, got {type(injected).__name__}"
                )
            self._client = injected
            self._owns_client = False
        else:
            proxy = config.get("proxy")
            if proxy is not None and not isinstance(proxy, str):
                raise TransportConfigurationError(self._name, f"'proxy' must be a URL string, got {type(proxy).__name__}")
            self._client = httpx.Client(timeout=float(timeout), proxy=proxy, follow_redirects=False)
            self._owns_client = True

        logger.debug("HTTP transport configured", endpoint=self.endpoint, proxy=config.get("proxy") is not None)

    def send(self, request: TransportRequest) -> TransportResponse:
        """POST one envelope.

        Raises:
            TransportConfigurationError: If configure() was not called
            httpx.HTTPError: On network failure (retried by the manager)
        """
        if self._client is None or self._dsn is None:
            raise TransportConfigurationError(self._name, "send() called before configure()")
        response = self._client.post(
            self._dsn.envelope_endpoint,
            content=request.body,
            headers={**self._headers, **request.headers},
        )
        return TransportResponse(status_code=response.status_code, headers=dict(response.headers))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._client is not None and self._owns_client:
            self._client.close()
