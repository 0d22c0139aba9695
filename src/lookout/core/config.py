# src/lookout/core/config.py
"""
Configuration schema and loading for the monitoring client.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.

Callables (before_send, before_send_transaction, before_breadcrumb,
traces_sampler) are not settings; they are passed to the Client directly.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from lookout.contracts.enums import OverflowPolicy
from lookout.core.dsn import Dsn


class TransportSettings(BaseModel):
    """Delivery queue, worker and retry configuration.

    Example YAML:
        transport:
          backend: http
          buffer_size: 64
          max_concurrency: 2
          overflow_policy: reject_new
          max_attempts: 3
    """

    model_config = {"frozen": True}

    backend: str = Field(default="http", description="Transport backend name (see lookout_get_transports)")
    buffer_size: int = Field(default=64, gt=0, description="Maximum pending envelopes (queued + in-flight)")
    max_concurrency: int = Field(default=2, gt=0, description="Maximum concurrent deliveries (worker threads)")
    overflow_policy: OverflowPolicy = Field(
        default=OverflowPolicy.REJECT_NEW,
        description="What to do when the buffer is full: reject_new or drop_oldest",
    )
    max_attempts: int = Field(default=3, gt=0, description="Total delivery attempts per envelope")
    initial_delay_seconds: float = Field(default=0.5, gt=0, description="Initial retry backoff delay")
    max_delay_seconds: float = Field(default=30.0, gt=0, description="Maximum retry backoff delay")
    exponential_base: float = Field(default=2.0, gt=1.0, description="Exponential backoff base")
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout of the backend")
    options: dict[str, Any] = Field(default_factory=dict, description="Backend-specific options")


class ClientSettings(BaseModel):
    """Top-level client configuration.

    All settings are validated and frozen after construction.
    """

    model_config = {"frozen": True}

    dsn: str | None = Field(default=None, description="Client key URL; None disables delivery")
    environment: str = Field(default="production", description="Environment attached to every event")
    release: str | None = Field(default=None, description="Release identifier attached to every event")
    server_name: str | None = Field(default=None, description="Host name attached to every event")
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0, description="Probability of sending an error event")
    traces_sample_rate: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Probability of keeping a new trace; None disables tracing",
    )
    max_breadcrumbs: int = Field(default=100, ge=0, description="Breadcrumb buffer capacity per scope")
    normalize_depth: int = Field(default=3, gt=0, description="Depth kept when normalizing extra data")
    send_client_reports: bool = Field(default=True, description="Send discarded-event reports on flush")
    debug: bool = Field(
        default=False,
        description=(
            "Log client diagnostics at DEBUG on the lookout logger; routes structlog through stdlib "
            "logging only if the host has not configured structlog"
        ),
    )
    transport: TransportSettings = Field(default_factory=TransportSettings)

    @field_validator("dsn")
    @classmethod
    def validate_dsn(cls, v: str | None) -> str | None:
        """Reject malformed DSNs at load time rather than at first send."""
        if v is None or not v.strip():
            return None
        Dsn.parse(v)
        return v.strip()


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand ${VAR} and ${VAR:-default} patterns in config values.

    Args:
        config: Configuration dict (may contain nested structures)

    Returns:
        New dict with environment variables expanded
    """
    import os

    def _expand_string(value: str) -> str:
        def replacer(match: re.Match[str]) -> str:
            env_value = os.environ.get(match.group(1))
            if env_value is not None:
                return env_value
            if match.group(2) is not None:
                return match.group(2)
            # Unset without default: keep the pattern so validation reports it
            return match.group(0)

        return _ENV_VAR_PATTERN.sub(replacer, value)

    def _expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _expand_string(value)
        elif isinstance(value, dict):
            return {k: _expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_expand_value(item) for item in value]
        else:
            return value

    return {k: _expand_value(v) for k, v in config.items()}


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def load_settings(config_path: Path | None = None) -> ClientSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (LOOKOUT_*) - highest priority
    2. Config file (lookout.yaml), when given
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: LOOKOUT_TRANSPORT__BUFFER_SIZE for nested keys.

    Args:
        config_path: Path to YAML configuration file (None: environment only)

    Returns:
        Validated ClientSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="LOOKOUT",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys and its own bookkeeping entries
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    raw_config = _expand_env_vars(raw_config)

    return ClientSettings(**raw_config)


def dump_settings(settings: ClientSettings) -> str:
    """Render resolved settings as YAML for diagnostics.

    A DSN secret key, if present, is masked.
    """
    config_dict = settings.model_dump(mode="json")
    if settings.dsn is not None:
        dsn = Dsn.parse(settings.dsn)
        if dsn.secret_key:
            config_dict["dsn"] = settings.dsn.replace(f":{dsn.secret_key}@", ":***@", 1)
    return yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=False)
