# tests/test_resolver.py
import pytest
from pydantic import ValidationError

from ui_gateway.core.errors import ConfigError, TargetError
from ui_gateway.services.resolver import ORIGIN_MARKET, construct_url, resolve, router_endpoint

from conftest import ROUTER_CONFIG


def test_ssl_enabled_uses_https_and_ssl_port():
    config = {
        "ssl.external.enabled": "true",
        "router.server.address": "host1",
        "router.ssl.server.port": "10001",
        "router.server.port": "11015",
    }
    assert resolve(config, "ns1", "apps").url == "https://host1:10001/v3/namespaces/ns1/apps"


@pytest.mark.parametrize("flag", ["false", "True", "yes", None])
def test_anything_but_literal_true_is_plain_http(flag):
    config = dict(ROUTER_CONFIG)
    if flag is None:
        del config["ssl.external.enabled"]
    else:
        config["ssl.external.enabled"] = flag
    endpoint = router_endpoint(config)
    assert (endpoint.scheme, endpoint.port) == ("http", 11015)


def test_segments_are_verbatim_and_empty_ones_skipped():
    assert resolve(ROUTER_CONFIG).url == "http://router.test:11015/v3/namespaces"
    assert resolve(ROUTER_CONFIG, "ns1", "").path_template == "/v3/namespaces/ns1"
    assert (resolve(ROUTER_CONFIG, "ns1", "apps/purchase/versions/1.0").path_template
            == "/v3/namespaces/ns1/apps/purchase/versions/1.0")


@pytest.mark.parametrize("missing", ["router.server.address", "router.server.port"])
def test_missing_router_config_is_a_config_error(missing):
    config = {k: v for k, v in ROUTER_CONFIG.items() if k != missing}
    with pytest.raises(ConfigError, match=missing):
        resolve(config, "ns1")


def test_missing_ssl_port_when_ssl_is_on():
    config = {k: v for k, v in ROUTER_CONFIG.items() if k != "router.ssl.server.port"}
    config["ssl.external.enabled"] = "true"
    with pytest.raises(ConfigError, match="router.ssl.server.port"):
        router_endpoint(config)


@pytest.mark.parametrize("port", ["abc", "0", "70000"])
def test_malformed_port_is_a_config_error(port):
    with pytest.raises(ConfigError):
        router_endpoint({**ROUTER_CONFIG, "router.server.port": port})


def test_unusable_router_host_is_a_config_error():
    with pytest.raises(ConfigError, match="invalid router address"):
        router_endpoint({**ROUTER_CONFIG, "router.server.address": "router\x01.test"})


def test_endpoint_is_immutable():
    endpoint = resolve(ROUTER_CONFIG, "ns1")
    with pytest.raises(ValidationError):
        endpoint.port = 1


@pytest.mark.parametrize("link", ["/v3/namespaces/default/apps", "v3/namespaces/default/apps"])
def test_router_links_are_appended_to_router_base(link):
    assert construct_url(ROUTER_CONFIG, link) == "http://router.test:11015/v3/namespaces/default/apps"


def test_market_link_on_configured_market_is_kept():
    link = "https://market.test/v2/packages/app/1.0/app.jar"
    assert construct_url(ROUTER_CONFIG, link, ORIGIN_MARKET) == link


@pytest.mark.parametrize("link", [
    "https://evil.test/v2/packages/app.jar",
    "/v2/packages/app.jar",
    "ftp://market.test/app.jar",
])
def test_market_link_elsewhere_is_rejected(link):
    with pytest.raises(TargetError):
        construct_url(ROUTER_CONFIG, link, ORIGIN_MARKET)


def test_empty_backend_path_is_rejected():
    with pytest.raises(TargetError):
        construct_url(ROUTER_CONFIG, "")
