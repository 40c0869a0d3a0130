"""Failure policy for the proxy pipeline.

Classifies faults from either leg, records them (log line + counter) and
decides what, if anything, the client gets to see. Nothing is retried.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from fastapi import Response
from fastapi.responses import PlainTextResponse
from prometheus_client import Counter
from starlette.requests import ClientDisconnect

from ui_gateway.core.errors import (
    ClientCancel,
    ConfigError,
    GatewayError,
    StreamError,
    TargetError,
    describe,
)

log = logging.getLogger("UI-Gateway.Failures")

FAULTS = Counter("gateway_faults_total", "Faults seen by the proxy pipeline", ["shape", "kind"])


class FaultKind(str, Enum):
    CONFIG = "config"
    PRE_BODY = "pre_body"
    MID_STREAM = "mid_stream"
    CLIENT_CANCEL = "client_cancel"


def classify(exc: BaseException) -> FaultKind:
    if isinstance(exc, (ConfigError, TargetError)):
        return FaultKind.CONFIG
    if isinstance(exc, (ClientCancel, ClientDisconnect, asyncio.CancelledError)):
        return FaultKind.CLIENT_CANCEL
    if isinstance(exc, StreamError):
        return FaultKind.MID_STREAM
    # ConnectError and raw httpx transport errors alike
    return FaultKind.PRE_BODY


def record(exc: BaseException, *, shape: Optional[str] = None, url: Optional[str] = None) -> FaultKind:
    """Log a caught fault with enough context to diagnose it, and count it."""
    kind = classify(exc)
    if isinstance(exc, GatewayError):
        shape = shape or exc.shape
        url = url or exc.url
    shape = shape or "-"
    text = describe(exc)
    if kind is FaultKind.CLIENT_CANCEL:
        log.info("client went away [%s] %s, outbound legs cancelled", shape, url or "-")
    elif kind is FaultKind.MID_STREAM:
        log.warning("stream truncated [%s] %s: %s", shape, url or "-", text)
    else:
        log.error("%s fault [%s] %s: %s", kind.value, shape, url or "-", text)
    FAULTS.labels(shape=shape, kind=kind.value).inc()
    return kind


def fault_response(exc: GatewayError) -> Response:
    """Client-visible outcome for a fault raised before the response started."""
    if isinstance(exc, ClientCancel):
        return Response(status_code=exc.status_code)
    return PlainTextResponse(str(exc), status_code=exc.status_code)
