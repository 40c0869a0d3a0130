"""UI gateway FastAPI application.

Creates the gateway service, wires routes, configures logging, turns gateway
faults into client responses and exposes Prometheus metrics.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ui_gateway.api.routes import router
from ui_gateway.core.config import Settings, load_settings
from ui_gateway.core.errors import GatewayError
from ui_gateway.core.logging import setup_logging
from ui_gateway.services import failures


def upstream_timeout(settings: Settings) -> httpx.Timeout:
    """Per-leg timeout; bounds how long a silent backend can hold a connection."""
    return httpx.Timeout(
        connect=settings.connect_timeout_s,
        read=settings.read_timeout_s,
        write=settings.read_timeout_s,
        pool=settings.connect_timeout_s,
    )


def create_app(settings: Optional[Settings] = None,
               transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """Build the gateway around an explicit settings snapshot.

    ``transport`` replaces the network transport of the upstream client,
    which lets tests put an ``httpx.MockTransport`` behind the gateway.
    """
    if settings is None:
        settings = load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan.

        Initializes logging and the pooled upstream client, and ensures it
        lives for the duration of the app.
        """
        setup_logging()
        async with httpx.AsyncClient(
            timeout=upstream_timeout(settings),
            verify=settings.verify_upstream_tls,
            follow_redirects=False,
            # never carry one user's cookies into another user's request
            cookies=httpx.Cookies(CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))),
            transport=transport,
        ) as client:
            app.state.client = client
            yield

    app = FastAPI(title="UI Gateway", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.include_router(router)

    @app.exception_handler(GatewayError)
    async def gateway_error(request: Request, exc: GatewayError):
        failures.record(exc, url=exc.url or str(request.url))
        return failures.fault_response(exc)

    @app.get("/metrics")
    async def metrics(_: Request):
        """Prometheus exposition endpoint for gateway process metrics."""
        data = generate_latest()
        return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
