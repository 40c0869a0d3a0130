"""Error taxonomy for the gateway.

Every fault raised while serving a request is a ``GatewayError`` and is
handled at the request boundary by the exception handler installed in
``ui_gateway.main``.
"""
from __future__ import annotations

from typing import Optional


def describe(cause: BaseException) -> str:
    """Human readable text for a transport exception (some httpx errors have no message)."""
    return str(cause) or type(cause).__name__


class GatewayError(Exception):
    """Base class; carries the shape and target URL for logging."""

    status_code = 500

    def __init__(self, message: str, *, shape: Optional[str] = None, url: Optional[str] = None):
        super().__init__(message)
        self.shape = shape
        self.url = url


class ConfigError(GatewayError):
    """Configuration is missing or malformed; no leg may be opened."""


class TargetError(GatewayError):
    """A client supplied link cannot be turned into a backend URL."""

    status_code = 400


class ConnectError(GatewayError):
    """Transport failure before any byte reached the client."""

    @classmethod
    def wrap(cls, cause: BaseException, *, shape: Optional[str] = None, url: Optional[str] = None) -> "ConnectError":
        return cls(describe(cause), shape=shape, url=url)


class StreamError(GatewayError):
    """Transport failure after the client response has started."""


class ClientCancel(GatewayError):
    """The client went away. Not an error: outbound legs are cancelled."""

    # nginx convention; nobody is left to read it
    status_code = 499
