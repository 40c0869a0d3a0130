"""API routes for the UI gateway.

Exposes the forwarding endpoints the console calls outside its websocket
channel: market-to-cluster forwarding, log downloads, file uploads, the
backend status probe and the login relay.
"""
from __future__ import annotations

from logging import getLogger
from typing import Optional

import httpx
from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter

from ui_gateway.core.config import Settings
from ui_gateway.models.schemas import LoginRequest, Shape
from ui_gateway.services import proxy
from ui_gateway.services.auth_relay import authenticate

log = getLogger("UI-Gateway.API")
router = APIRouter()

REQUESTS = Counter("gateway_requests_total", "Total forwarded requests per shape", ["shape"])


def _get_client_and_settings(request: Request) -> tuple[httpx.AsyncClient, Settings]:
    """Return the pooled upstream client and settings snapshot set up in the app lifespan."""
    return request.app.state.client, request.app.state.settings


@router.get("/forwardMarketToCdap")
async def forward_market_to_cdap(
    request: Request,
    source: str = Query(..., description="link to the content to forward"),
    target: str = Query(..., description="cluster API path receiving the content"),
    source_method: str = Query("GET", alias="sourceMethod"),
    target_method: str = Query("POST", alias="targetMethod"),
):
    """Stream content from the market directly into a cluster API call."""
    REQUESTS.labels(shape=Shape.FETCH_AND_RELAY.value).inc()
    client, settings = _get_client_and_settings(request)
    return await proxy.forward_market(
        client, request, settings.cdap_config,
        source=source, target=target, source_method=source_method, target_method=target_method,
    )


@router.get("/downloadLogs")
async def download_logs(
    request: Request,
    backend_path: str = Query(..., alias="backendPath"),
    method: str = Query("GET"),
    log_type: Optional[str] = Query(None, alias="type", description="'download' sends the body as an attachment"),
    filename: Optional[str] = Query(None),
):
    REQUESTS.labels(shape=Shape.DOWNLOAD_RELAY.value).inc()
    client, settings = _get_client_and_settings(request)
    return await proxy.relay_download(
        client, request, settings.cdap_config,
        backend_path=backend_path, method=method, kind=log_type, filename=filename,
    )


@router.post("/namespaces/{namespace}/{path:path}")
async def upload_to_namespace(namespace: str, path: str, request: Request):
    """File uploads (e.g. ``POST /namespaces/{ns}/apps``) streamed to the router."""
    REQUESTS.labels(shape=Shape.UPLOAD_RELAY.value).inc()
    client, settings = _get_client_and_settings(request)
    return await proxy.relay_upload(client, request, settings.cdap_config, namespace, path)


@router.get("/backendstatus")
async def backend_status(request: Request):
    REQUESTS.labels(shape=Shape.STATUS_PROBE.value).inc()
    client, settings = _get_client_and_settings(request)
    return await proxy.probe_status(client, request, settings.cdap_config)


@router.post("/login")
@router.post("/accessToken")
async def login(body: LoginRequest, request: Request):
    """Both paths do the same thing; they differ only for the caller's benefit."""
    REQUESTS.labels(shape=Shape.AUTH_RELAY.value).inc()
    client, settings = _get_client_and_settings(request)
    return await authenticate(client, settings, body)


@router.get("/status")
async def status():
    """Health check for load balancers in front of the gateway."""
    return PlainTextResponse("OK")
