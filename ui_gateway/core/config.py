"""Configuration for the UI gateway.

Provides strongly-typed, immutable settings using Pydantic and a loader that
reads the cluster configuration (a flat JSON object of ``cdap-site`` keys)
plus environment overrides. The resulting ``Settings`` snapshot is handed
to ``create_app`` and never re-read while serving requests.
"""

from __future__ import annotations

import json
import os
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Cluster configuration keys consumed by the gateway
SSL_ENABLED = "ssl.external.enabled"
ROUTER_ADDRESS = "router.server.address"
ROUTER_PORT = "router.server.port"
ROUTER_SSL_PORT = "router.ssl.server.port"
MARKET_BASE_URL = "market.base.url"

# env var -> cluster configuration key it overrides
_ENV_OVERRIDES = {
    "SSL_EXTERNAL_ENABLED": SSL_ENABLED,
    "ROUTER_SERVER_ADDRESS": ROUTER_ADDRESS,
    "ROUTER_SERVER_PORT": ROUTER_PORT,
    "ROUTER_SSL_SERVER_PORT": ROUTER_SSL_PORT,
    "MARKET_BASE_URL": MARKET_BASE_URL,
}


def _as_config_value(value: Any) -> str:
    # JSON booleans must compare equal to the "true" string the router config uses
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class Settings(BaseModel):
    """Pydantic settings for the gateway."""

    model_config = ConfigDict(frozen=True)

    cdap_config: Mapping[str, str] = Field(default_factory=dict)
    connect_timeout_s: float = 10.0
    read_timeout_s: float = 120.0
    verify_upstream_tls: bool = False
    auth_server_url: str | None = None

    @field_validator("cdap_config", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("cdap_config must be a mapping")
        return {str(k): _as_config_value(v) for k, v in value.items()}

    @field_validator("cdap_config", mode="after")
    @classmethod
    def _freeze(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(value))


def _read_cdap_config(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        raise RuntimeError(f"Invalid configuration: cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise RuntimeError(f"Invalid configuration: {path} must hold a JSON object")
    return data


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """Load settings from CDAP_CONFIG_PATH and environment variables."""
    cdap_config: dict[str, Any] = {}
    path = os.getenv("CDAP_CONFIG_PATH")
    if path:
        cdap_config.update(_read_cdap_config(path))
    for env_name, key in _ENV_OVERRIDES.items():
        if env_name in os.environ:
            cdap_config[key] = os.environ[env_name]

    try:
        return Settings(
            cdap_config=cdap_config,
            connect_timeout_s=float(os.getenv("UPSTREAM_CONNECT_TIMEOUT_S", "10.0")),
            read_timeout_s=float(os.getenv("UPSTREAM_READ_TIMEOUT_S", "120.0")),
            verify_upstream_tls=_env_flag("UPSTREAM_TLS_VERIFY", False),
            auth_server_url=os.getenv("AUTH_SERVER_URL"),
        )
    except (ValidationError, ValueError) as e:
        raise RuntimeError(f"Invalid configuration: {e}") from e
