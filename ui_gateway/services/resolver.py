"""Backend target resolution.

Turns the cluster configuration snapshot plus a logical target into the URL a
leg is sent to. Pure functions, no I/O.
"""
from __future__ import annotations

from typing import Mapping

import httpx
from pydantic import ValidationError

from ui_gateway.core.config import MARKET_BASE_URL, ROUTER_ADDRESS, ROUTER_PORT, ROUTER_SSL_PORT, SSL_ENABLED
from ui_gateway.core.errors import ConfigError, TargetError
from ui_gateway.models.schemas import BackendEndpoint

API_PREFIX = "/v3/namespaces"

ORIGIN_ROUTER = "router"
ORIGIN_MARKET = "market"


def router_endpoint(config: Mapping[str, str]) -> BackendEndpoint:
    """Scheme, host and port of the router; ``path_template`` left empty."""
    ssl = config.get(SSL_ENABLED) == "true"
    port_key = ROUTER_SSL_PORT if ssl else ROUTER_PORT
    host = config.get(ROUTER_ADDRESS)
    port = config.get(port_key)
    if not host:
        raise ConfigError(f"{ROUTER_ADDRESS} is not configured")
    if port in (None, ""):
        raise ConfigError(f"{port_key} is not configured")
    try:
        endpoint = BackendEndpoint(scheme="https" if ssl else "http", host=host, port=port)
        httpx.URL(endpoint.base_url)
    except ValidationError as e:
        raise ConfigError(f"invalid router address {host}:{port}: {e.errors()[0]['msg']}") from e
    except httpx.InvalidURL as e:
        raise ConfigError(f"invalid router address {host}:{port}: {e}") from e
    return endpoint


def resolve(config: Mapping[str, str], *segments: str) -> BackendEndpoint:
    """Router endpoint for ``/v3/namespaces/<segments...>``.

    Segments are used verbatim; empty ones are skipped so they cannot produce
    a ``//`` in the path.
    """
    path = API_PREFIX + "".join(f"/{seg}" for seg in segments if seg)
    return router_endpoint(config).with_path(path)


def _check_market_link(config: Mapping[str, str], link: str) -> str:
    try:
        url = httpx.URL(link)
    except httpx.InvalidURL as e:
        raise TargetError(f"invalid source link {link!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise TargetError(f"source link must be an absolute http(s) URL: {link!r}")
    market = config.get(MARKET_BASE_URL)
    if market and httpx.URL(market).host != url.host:
        raise TargetError(f"source link {link!r} is not on the configured market")
    return link


def construct_url(config: Mapping[str, str], link: str, origin: str = ORIGIN_ROUTER) -> str:
    """URL for a client supplied link.

    Router links are paths appended to the router base URL; market links must
    already be absolute URLs on the configured market host.
    """
    if origin == ORIGIN_MARKET:
        return _check_market_link(config, link)
    if not link:
        raise TargetError("missing backend path")
    return router_endpoint(config).with_path("/" + link.lstrip("/")).url
