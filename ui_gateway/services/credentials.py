"""Bearer credential injection from the console's auth cookie."""
from __future__ import annotations

from typing import Mapping, Optional

from ui_gateway.models.schemas import Credential
from ui_gateway.services.headers import HeaderMap

AUTH_COOKIE = "CDAP_Auth_Token"


def inject(cookies: Mapping[str, str]) -> Optional[Credential]:
    token = cookies.get(AUTH_COOKIE)
    if not token:
        return None
    return Credential(token=token)


def apply_credential(headers: HeaderMap, credential: Optional[Credential]) -> HeaderMap:
    """Set ``authorization`` from ``credential``; without one, headers pass through as-is."""
    if credential is None:
        return headers
    return headers.set("authorization", credential.header_value)
