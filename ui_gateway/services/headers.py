"""Header rewriting for the gateway.

``HeaderMap`` is an immutable, case-insensitive mapping where later writes win;
it is used for outbound request headers. Response headers stay a list of pairs.
Each forwarding shape builds its outbound headers once, from the inbound
request, through the functions below.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Optional, Tuple, Union

# RFC 9110 hop-by-hop headers (must not be forwarded)
HOP_BY_HOP = frozenset({
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade",
})

HeaderSource = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


class HeaderMap(Mapping[str, str]):
    """Immutable header mapping with lowercase keys; the last value for a name wins."""

    __slots__ = ("_items",)

    def __init__(self, headers: HeaderSource = ()):
        pairs = headers.items() if isinstance(headers, Mapping) else headers
        items: dict[str, str] = {}
        for name, value in pairs:
            items[name.lower()] = value
        self._items = MappingProxyType(items)

    def __getitem__(self, name: str) -> str:
        return self._items[name.lower()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"HeaderMap({dict(self._items)!r})"

    def set(self, name: str, value: str) -> "HeaderMap":
        return HeaderMap([*self._items.items(), (name, value)])

    def update(self, other: HeaderSource) -> "HeaderMap":
        extra = other.items() if isinstance(other, Mapping) else other
        return HeaderMap([*self._items.items(), *extra])

    def without(self, *names: str) -> "HeaderMap":
        drop = {n.lower() for n in names}
        return HeaderMap((k, v) for k, v in self._items.items() if k not in drop)


def _strip_hop_headers(headers: HeaderSource) -> HeaderMap:
    return HeaderMap(headers).without(*HOP_BY_HOP)


def outbound(headers: HeaderSource) -> HeaderMap:
    """Inbound request headers minus hop-by-hop and ``host`` (httpx sets its own)."""
    return _strip_hop_headers(headers).without("host")


def upload_headers(inbound: HeaderSource) -> HeaderMap:
    # content-type and content-length describe the body we stream on unchanged
    return outbound(inbound)


def probe_headers(inbound: HeaderSource) -> HeaderMap:
    # long browser URLs in referer push the router over its header size limit
    return outbound(inbound).without("referer", "content-length", "content-type")


def download_headers(inbound: HeaderSource) -> HeaderMap:
    return outbound(inbound).without("content-length", "content-type")


def target_headers(inbound: HeaderSource) -> HeaderMap:
    """Headers for the second leg of fetch-and-relay; body and content-type come from the source."""
    return outbound(inbound).without("content-length", "content-type", "content-encoding")


def relayed(response_headers: Iterable[Tuple[str, str]],
            overrides: Optional[Mapping[str, str]] = None) -> List[Tuple[str, str]]:
    """Upstream response headers safe to hand back to the client.

    Takes the header pairs as received (``httpx.Headers.multi_items()``), so
    repeated names such as ``set-cookie`` stay separate lines. ``overrides``
    replace every upstream value of the names they set.
    """
    overrides = overrides or {}
    drop = HOP_BY_HOP | {name.lower() for name in overrides}
    pairs = [(name, value) for name, value in response_headers if name.lower() not in drop]
    return pairs + list(overrides.items())
