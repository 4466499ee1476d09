"""Response hardening and client identification helpers."""

from __future__ import annotations

from collections.abc import Mapping

from starlette.requests import Request
from starlette.responses import Response

SECURITY_HEADERS: Mapping[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


def apply_security_headers(response: Response) -> Response:
    """Attach the fixed security headers without clobbering explicit ones."""
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def client_address(request: Request) -> str:
    """Return the peer address as seen after proxy header handling."""
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


__all__ = ["SECURITY_HEADERS", "apply_security_headers", "client_address"]
