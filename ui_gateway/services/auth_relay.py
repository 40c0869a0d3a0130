"""Login / access-token relay to the cluster's authentication server."""
from __future__ import annotations

import logging

import httpx
from fastapi import Response

from ui_gateway.core.config import Settings
from ui_gateway.core.errors import ConfigError, ConnectError
from ui_gateway.models.schemas import LoginRequest, Shape

log = logging.getLogger("UI-Gateway.Auth")


async def authenticate(client: httpx.AsyncClient, settings: Settings, login: LoginRequest) -> Response:
    """Exchange username/password for a token.

    The credentials go out as HTTP basic auth. Whatever the auth server
    answers (status and body) is handed back unchanged; any inbound
    ``authorization`` header is left alone since this call carries its own.
    """
    url = settings.auth_server_url
    if not url:
        raise ConfigError("authentication server address is not configured", shape=Shape.AUTH_RELAY.value)
    try:
        upstream = await client.get(url, auth=(login.username, login.password))
    except httpx.HTTPError as e:
        raise ConnectError.wrap(e, shape=Shape.AUTH_RELAY.value, url=url) from e
    if upstream.status_code != 200:
        log.warning("login rejected by %s with HTTP %s", url, upstream.status_code)
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type"),
    )
