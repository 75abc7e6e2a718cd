# SPDX-License-Identifier: Apache-2.0
"""
Origin resolution for same-origin API paths.

The browser only ever talks to the portal. Every path under the API prefix
is rewritten onto the backend origin, path and query string preserved:

    /api/auth/me?x=1  ->  <backend-origin>/auth/me?x=1

``forward`` is the pass-through used by the portal's ``/api/*`` route.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import JSONResponse, Response

if TYPE_CHECKING:
    from barangay_portal.transport import Transport

logger = logging.getLogger(__name__)

# Connection-scoped headers never cross the proxy in either direction.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# Request headers recomputed by the HTTP client for the upstream hop.
_REQUEST_DROP = HOP_BY_HOP_HEADERS | {"host", "content-length"}

# httpx hands back a decoded body, so its framing headers no longer apply.
_RESPONSE_DROP = HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}


class OriginResolutionError(ValueError):
    """Raised when a path falls outside the forwarded prefix."""

    def __init__(self, path: str, prefix: str) -> None:
        self.path = path
        self.prefix = prefix
        super().__init__(f"Path {path!r} is not under {prefix!r}")


class OriginResolver:
    """Static rewrite rule ``<prefix>/*`` -> ``<origin>/*``."""

    def __init__(self, origin: str, prefix: str = "/api") -> None:
        self._origin = origin.rstrip("/")
        self._prefix = prefix.rstrip("/")

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def prefix(self) -> str:
        return self._prefix

    def matches(self, path: str) -> bool:
        route = path.partition("?")[0]
        return route == self._prefix or route.startswith(self._prefix + "/")

    def resolve(self, path: str) -> str:
        """Map a prefixed path (with optional query) onto the backend origin."""
        if not self.matches(path):
            raise OriginResolutionError(path, self._prefix)
        route, sep, query = path.partition("?")
        rest = route[len(self._prefix):] or "/"
        return f"{self._origin}{rest}{sep}{query}"


# ============================================================================
# Pass-through forwarding
# ============================================================================


def _request_target(request: Request) -> str:
    """The path and query exactly as the browser sent them, escapes intact."""
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else quote(request.url.path)
    query = request.scope.get("query_string", b"").decode("latin-1")
    return f"{path}?{query}" if query else path


async def forward(transport: "Transport", request: Request) -> Response:
    """Replay ``request`` against the backend and return its response unchanged."""
    from barangay_portal.transport import TransportError

    headers = [
        (key, value)
        for key, value in request.headers.items()
        if key.lower() not in _REQUEST_DROP
    ]
    body = await request.body()

    try:
        upstream = await transport.send(
            request.method,
            _request_target(request),
            headers=headers,
            content=body or None,
        )
    except TransportError:
        return JSONResponse(status_code=502, content={"detail": "Unable to reach server"})

    response = Response(content=upstream.content, status_code=upstream.status_code)
    for key, value in upstream.headers.multi_items():
        if key.lower() in _RESPONSE_DROP:
            continue
        response.headers.append(key, value)
    return response
