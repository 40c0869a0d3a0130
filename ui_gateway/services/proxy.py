"""Streaming proxy pipeline for the UI gateway.

Each forwarding shape opens one or more ``ProxyLeg`` objects (an outbound
httpx call in streaming mode) and hands the last one to ``RelayResponse``,
which streams its body back to the client and closes the leg on every exit
path. Bodies are relayed chunk by chunk and never buffered whole.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Mapping, MutableMapping, Optional, Tuple
from urllib.parse import unquote

import anyio
import httpx
from fastapi import Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse
from prometheus_client import Histogram
from starlette.requests import ClientDisconnect

from ui_gateway.core.errors import ClientCancel, ConnectError, GatewayError, StreamError, TargetError, describe
from ui_gateway.models.schemas import ProxyRequestSpec, Shape
from ui_gateway.services import failures
from ui_gateway.services.credentials import apply_credential, inject
from ui_gateway.services.headers import (
    HeaderMap,
    download_headers,
    probe_headers,
    relayed,
    target_headers,
    upload_headers,
)
from ui_gateway.services.resolver import ORIGIN_MARKET, construct_url, resolve

log = logging.getLogger("UI-Gateway.Proxy")

UPSTREAM_HEAD_SECONDS = Histogram(
    "gateway_upstream_head_seconds", "Time until an upstream response head arrives", ["shape"]
)

# chunks buffered between the source and target legs of fetch-and-relay
PIPE_BUFFER_CHUNKS = 16

Receive = Callable[[], Awaitable[MutableMapping[str, Any]]]


class ClientWatch:
    """Cancels a scope as soon as the inbound client disconnects.

    ``after`` holds the first ``receive`` back until the request body has
    been read elsewhere, so the watch never swallows body messages.
    """

    def __init__(self, receive: Receive, after: Optional[anyio.Event] = None):
        self._receive = receive
        self._after = after
        self.gone = False

    async def run(self, scope: anyio.CancelScope) -> None:
        if self._after is not None:
            await self._after.wait()
        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self.gone = True
                scope.cancel()
                return


class ProxyLeg:
    """One in-flight outbound call. Owns the httpx response stream until ``aclose``."""

    def __init__(self, shape: Shape, url: str, response: httpx.Response):
        self.shape = shape
        self.url = url
        self._response = response

    @classmethod
    async def open(cls, client: httpx.AsyncClient, spec: ProxyRequestSpec, shape: Shape,
                   watch: Optional[ClientWatch] = None) -> "ProxyLeg":
        """Send ``spec`` and return once the response head has arrived.

        With a ``watch`` the call is abandoned (``ClientCancel``) when the
        client disconnects before the head arrives.
        """
        if watch is None:
            leg = cls(shape, spec.url, await cls._send(client, spec, shape))
        else:
            leg = None
            error: Optional[GatewayError] = None
            async with anyio.create_task_group() as tg:
                tg.start_soon(watch.run, tg.cancel_scope)
                try:
                    leg = cls(shape, spec.url, await cls._send(client, spec, shape))
                except GatewayError as e:
                    error = e
                tg.cancel_scope.cancel()
            if watch.gone:
                if leg is not None:
                    await leg.aclose()
                raise ClientCancel("client disconnected", shape=shape.value, url=spec.url)
            if error is not None:
                raise error
        log.debug("%s %s -> %s [%s]", spec.method, spec.url, leg.status_code, shape.value)
        return leg

    @staticmethod
    async def _send(client: httpx.AsyncClient, spec: ProxyRequestSpec, shape: Shape) -> httpx.Response:
        try:
            request = client.build_request(spec.method, spec.url, headers=dict(spec.headers), content=spec.body)
            with UPSTREAM_HEAD_SECONDS.labels(shape=shape.value).time():
                return await client.send(request, stream=True)
        except httpx.InvalidURL as e:
            raise TargetError(f"invalid backend URL: {describe(e)}", shape=shape.value, url=spec.url) from e
        except httpx.HTTPError as e:
            raise ConnectError.wrap(e, shape=shape.value, url=spec.url) from e
        except ClientDisconnect as e:
            raise ClientCancel("client disconnected", shape=shape.value, url=spec.url) from e

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def is_success(self) -> bool:
        return self._response.is_success

    async def iter_raw(self) -> AsyncIterator[bytes]:
        """Body bytes exactly as received (content-encoding untouched)."""
        try:
            async for chunk in self._response.aiter_raw():
                yield chunk
        except httpx.HTTPError as e:
            raise StreamError(describe(e), shape=self.shape.value, url=self.url) from e

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Decoded body bytes, for feeding into another leg."""
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise StreamError(describe(e), shape=self.shape.value, url=self.url) from e

    async def aclose(self) -> None:
        with anyio.CancelScope(shield=True):
            await self._response.aclose()

    async def __aenter__(self) -> "ProxyLeg":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class RelayResponse(StreamingResponse):
    """Streams a leg's body to the client.

    Status and headers go out before the first body byte. A transport error
    after that point is logged and re-raised, so the server aborts the client
    connection instead of ending the body as if it were complete.
    """

    def __init__(self, leg: ProxyLeg, headers: Iterable[Tuple[str, str]]):
        self.leg = leg
        super().__init__(self._relay(), status_code=leg.status_code)
        # pairs, not a dict: repeated upstream headers (set-cookie) stay separate
        self.raw_headers = [(name.lower().encode("latin-1"), value.encode("latin-1")) for name, value in headers]

    async def _relay(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.leg.iter_raw():
                yield chunk
        except StreamError as e:
            failures.record(e)
            raise
        except anyio.get_cancelled_exc_class():
            failures.record(ClientCancel("client disconnected", shape=self.leg.shape.value, url=self.leg.url))
            raise

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except ClientDisconnect:
            failures.record(ClientCancel("client disconnected", shape=self.leg.shape.value, url=self.leg.url))
        finally:
            await self.leg.aclose()


# --- upload relay ----------------------------------------------------------

async def _read_body(request: Request, done: anyio.Event) -> AsyncIterator[bytes]:
    async for chunk in request.stream():
        yield chunk
    done.set()


async def relay_upload(client: httpx.AsyncClient, request: Request, config: Mapping[str, str],
                       namespace: str, path: str) -> RelayResponse:
    """Stream the client's body to ``/v3/namespaces/{namespace}/{path}`` and relay the answer."""
    endpoint = resolve(config, namespace, path)
    body_read = anyio.Event()
    spec = ProxyRequestSpec("POST", endpoint.url, upload_headers(request.headers),
                            body=_read_body(request, body_read))
    leg = await ProxyLeg.open(client, spec, Shape.UPLOAD_RELAY, ClientWatch(request.receive, after=body_read))
    return RelayResponse(leg, relayed(leg.headers.multi_items()))


# --- download relay --------------------------------------------------------

def disposition_headers(status_code: int, download: bool, filename: Optional[str]) -> dict[str, str]:
    """Response header overrides for the download relay; none unless the backend said 200."""
    if status_code != 200:
        return {}
    headers = {"cache-control": "no-cache, no-store"}
    if download:
        headers["content-disposition"] = f"attachment; filename={filename}"
    else:
        headers["content-type"] = "text/plain"
    return headers


async def relay_download(client: httpx.AsyncClient, request: Request, config: Mapping[str, str], *,
                         backend_path: str, method: str = "GET", kind: Optional[str] = None,
                         filename: Optional[str] = None) -> RelayResponse:
    url = construct_url(config, unquote(backend_path))
    log.info("Download logs start: %s", url)
    headers = apply_credential(download_headers(request.headers), inject(request.cookies))
    spec = ProxyRequestSpec(method.upper(), url, headers)
    leg = await ProxyLeg.open(client, spec, Shape.DOWNLOAD_RELAY, ClientWatch(request.receive))
    overrides = disposition_headers(leg.status_code, kind == "download", filename or "download")
    return RelayResponse(leg, relayed(leg.headers.multi_items(), overrides))


# --- status probe ----------------------------------------------------------

async def probe_status(client: httpx.AsyncClient, request: Request, config: Mapping[str, str]) -> Response:
    """Reachability check of the router; any answer at all counts as OK."""
    endpoint = resolve(config)
    spec = ProxyRequestSpec("GET", endpoint.url, probe_headers(request.headers))
    async with await ProxyLeg.open(client, spec, Shape.STATUS_PROBE, ClientWatch(request.receive)) as leg:
        log.debug("backend status probe answered %s", leg.status_code)
    return PlainTextResponse("OK")


# --- fetch-and-relay -------------------------------------------------------

class RelayState(str, Enum):
    AWAITING_SOURCE_HEAD = "awaiting-source-head"
    RELAYING_SOURCE_TO_TARGET = "relaying-source-to-target"
    RELAYING_TARGET_TO_CLIENT = "relaying-target-to-client"


class FetchAndRelay:
    """Pipe a source download into a target upload, then the target's answer to the client.

    The source and target legs run as sibling tasks in one task group, next
    to a watcher that cancels both if the client disconnects. The target leg
    is only opened once the source head arrived with a 2xx status; its
    request body is the source body, passed through a bounded channel so a
    slow target throttles the source read. Any fault cancels the group.
    """

    shape = Shape.FETCH_AND_RELAY

    def __init__(self, client: httpx.AsyncClient, source: ProxyRequestSpec, target: ProxyRequestSpec,
                 receive: Optional[Receive] = None):
        self._client = client
        self.source = source
        self.target = target
        self._watch = ClientWatch(receive) if receive is not None else None
        self.state = RelayState.AWAITING_SOURCE_HEAD
        self._source_ready = anyio.Event()
        self._source_type: Optional[str] = None
        self._target_leg: Optional[ProxyLeg] = None
        self._error: Optional[GatewayError] = None

    async def run(self) -> ProxyLeg:
        """Drive both legs; return the target leg once its response head is in."""
        send_stream, receive_stream = anyio.create_memory_object_stream(PIPE_BUFFER_CHUNKS)
        async with anyio.create_task_group() as outer:
            if self._watch is not None:
                outer.start_soon(self._watch.run, outer.cancel_scope)
            async with anyio.create_task_group() as legs:
                legs.start_soon(self._pump_source, send_stream, legs.cancel_scope)
                legs.start_soon(self._open_target, receive_stream, legs.cancel_scope)
            outer.cancel_scope.cancel()

        client_gone = self._watch is not None and self._watch.gone
        if client_gone or self._error is not None or self._target_leg is None:
            if self._target_leg is not None:
                await self._target_leg.aclose()
            if client_gone:
                raise ClientCancel("client disconnected", shape=self.shape.value, url=self.target.url)
            raise self._error or ConnectError("target leg did not complete",
                                              shape=self.shape.value, url=self.target.url)
        self.state = RelayState.RELAYING_TARGET_TO_CLIENT
        return self._target_leg

    def _fail(self, error: GatewayError, scope: anyio.CancelScope) -> None:
        if self._error is None:
            self._error = error
        scope.cancel()

    async def _pump_source(self, send_stream, scope: anyio.CancelScope) -> None:
        leg: Optional[ProxyLeg] = None
        async with send_stream:
            try:
                leg = await ProxyLeg.open(self._client, self.source, self.shape)
                if not leg.is_success:
                    raise ConnectError(f"source responded with HTTP {leg.status_code}",
                                       shape=self.shape.value, url=self.source.url)
                self._source_type = leg.headers.get("content-type")
                self.state = RelayState.RELAYING_SOURCE_TO_TARGET
                self._source_ready.set()
                async for chunk in leg.iter_bytes():
                    await send_stream.send(chunk)
            except anyio.BrokenResourceError:
                # the target answered without reading the whole body
                pass
            except GatewayError as e:
                self._fail(e, scope)
            finally:
                if leg is not None:
                    await leg.aclose()

    async def _drain(self, receive_stream) -> AsyncIterator[bytes]:
        async for chunk in receive_stream:
            yield chunk
        if self._error is not None:
            # a truncated source must not reach the target as a complete body
            raise self._error

    async def _open_target(self, receive_stream, scope: anyio.CancelScope) -> None:
        async with receive_stream:
            await self._source_ready.wait()
            headers = HeaderMap(self.target.headers)
            if self._source_type:
                headers = headers.set("content-type", self._source_type)
            spec = replace(self.target, headers=headers, body=self._drain(receive_stream))
            try:
                self._target_leg = await ProxyLeg.open(self._client, spec, self.shape)
            except GatewayError as e:
                self._fail(e, scope)


async def forward_market(client: httpx.AsyncClient, request: Request, config: Mapping[str, str], *,
                         source: str, target: str, source_method: str = "GET",
                         target_method: str = "POST") -> RelayResponse:
    source_spec = ProxyRequestSpec(source_method.upper(), construct_url(config, source, ORIGIN_MARKET), HeaderMap())
    target_spec = ProxyRequestSpec(target_method.upper(), construct_url(config, target), target_headers(request.headers))
    relay = FetchAndRelay(client, source_spec, target_spec, receive=request.receive)
    leg = await relay.run()
    return RelayResponse(leg, relayed(leg.headers.multi_items()))
