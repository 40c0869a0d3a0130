# tests/test_status_probe.py
import httpx
import pytest

from ui_gateway.core.config import Settings

PROBE_PATH = "/v3/namespaces"


@pytest.mark.anyio
@pytest.mark.parametrize("status", [100, 200, 204, 302, 401, 404, 500, 503, 599])
async def test_any_backend_status_is_reported_as_ok(gateway, backend, status):
    backend.on(PROBE_PATH, httpx.Response(status, text="irrelevant"))
    resp = await gateway.get("/backendstatus")
    assert resp.status_code == 200
    assert resp.text == "OK"
    assert str(backend.calls(PROBE_PATH)[0].url) == "http://router.test:11015/v3/namespaces"


@pytest.mark.anyio
@pytest.mark.parametrize("error", [
    httpx.ConnectError("connection refused"),
    httpx.ConnectTimeout("timed out while connecting"),
    httpx.RemoteProtocolError("server disconnected without sending a response"),
])
async def test_transport_failure_is_500_with_error_text(gateway, backend, error):
    backend.on(PROBE_PATH, error)
    resp = await gateway.get("/backendstatus")
    assert resp.status_code == 500
    assert resp.text == str(error)


@pytest.mark.anyio
@pytest.mark.parametrize("inbound", [
    {"Referer": "http://console.example.com/ns/default/" + "a" * 8000},
    {"referer": "http://console.example.com/"},
    {},
])
async def test_referer_is_never_forwarded(gateway, backend, inbound):
    backend.on(PROBE_PATH, httpx.Response(200))
    await gateway.get("/backendstatus", headers={**inbound, "X-Requested-With": "console"})
    sent = backend.calls(PROBE_PATH)[0]
    assert "referer" not in sent.headers
    assert sent.headers["x-requested-with"] == "console"


@pytest.mark.anyio
async def test_unconfigured_router_fails_before_any_call(gateway_for, backend):
    async with gateway_for(Settings(cdap_config={})) as client:
        resp = await client.get("/backendstatus")
    assert resp.status_code == 500
    assert "router.server.address" in resp.text
    assert backend.requests == []


@pytest.mark.anyio
async def test_liveness_and_metrics(gateway, backend):
    backend.on(PROBE_PATH, httpx.Response(200))
    await gateway.get("/backendstatus")

    resp = await gateway.get("/status")
    assert (resp.status_code, resp.text) == (200, "OK")

    metrics = await gateway.get("/metrics")
    assert metrics.status_code == 200
    assert 'gateway_requests_total{shape="status_probe"}' in metrics.text
