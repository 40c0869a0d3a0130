"""Models shared by the resolver, credential injector and proxy pipeline."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class Shape(str, Enum):
    """Request forwarding pattern a leg belongs to."""

    FETCH_AND_RELAY = "fetch_and_relay"
    UPLOAD_RELAY = "upload_relay"
    DOWNLOAD_RELAY = "download_relay"
    STATUS_PROBE = "status_probe"
    AUTH_RELAY = "auth_relay"


class BackendEndpoint(BaseModel):
    """Where a leg is sent. Built per request, never cached."""

    model_config = ConfigDict(frozen=True)

    scheme: Literal["http", "https"]
    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    path_template: str = ""

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.path_template}"

    def with_path(self, path: str) -> "BackendEndpoint":
        return self.model_copy(update={"path_template": path})


class Credential(BaseModel):
    """Bearer credential lifted from an inbound cookie."""

    model_config = ConfigDict(frozen=True)

    scheme: Literal["Bearer"] = "Bearer"
    token: str

    @property
    def header_value(self) -> str:
        return f"{self.scheme} {self.token}"


@dataclass(frozen=True)
class ProxyRequestSpec:
    """One outbound request: method, URL, rewritten headers and an optional body stream."""

    method: str
    url: str
    headers: Mapping[str, str]
    # async iterable of bytes; left untyped because it is consumed by httpx as-is
    body: Optional[Any] = None


class LoginRequest(BaseModel):
    """Body of ``POST /login`` and ``POST /accessToken``."""

    username: str
    password: str
