# SPDX-License-Identifier: Apache-2.0
"""Low-level HTTP transport towards the backend origin.

A single call primitive, ``Transport.send``, resolves a same-origin API path
onto the backend, attaches the caller's session cookies and returns the raw
``httpx.Response``. It never interprets status codes or bodies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from http.cookiejar import CookieJar, DefaultCookiePolicy
from http.cookies import CookieError, Morsel, SimpleCookie
from typing import Any, Mapping, Sequence

import httpx
from fastapi.responses import Response

from barangay_portal.origin import OriginResolver

logger = logging.getLogger(__name__)


class TransportError(ConnectionError):
    """Raised when the backend cannot be reached (DNS, refused, timeout)."""

    def __init__(self, method: str, url: str, reason: str) -> None:
        self.method = method
        self.url = url
        self.reason = reason
        super().__init__(f"{method} {url} failed: {reason}")


# =============================================================================
# Session context (explicit credential handle)
# =============================================================================


def _is_expired(morsel: Morsel) -> bool:
    """Whether a Set-Cookie deletes its cookie. Max-Age wins over Expires."""
    max_age = morsel["max-age"]
    if max_age:
        try:
            return int(max_age) <= 0
        except ValueError:
            return False
    expires = morsel["expires"]
    if not expires:
        return False
    try:
        when = parsedate_to_datetime(expires)
    except (TypeError, ValueError):
        return False
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when <= datetime.now(timezone.utc)


@dataclass
class SessionContext:
    """Cookie jar for one browser request.

    Built from the cookies the browser sent to the portal, attached to every
    backend call, and updated from the backend's ``Set-Cookie`` headers. The
    raw headers are kept so they can be relayed to the browser untouched.
    """

    cookies: dict[str, str] = field(default_factory=dict)
    set_cookie_headers: list[str] = field(default_factory=list)

    @classmethod
    def from_cookies(cls, cookies: Mapping[str, str]) -> "SessionContext":
        return cls(cookies=dict(cookies))

    def cookie_header(self) -> str:
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())

    def absorb(self, response: httpx.Response) -> None:
        """Record every ``Set-Cookie`` the backend issued on ``response``."""
        for raw in response.headers.get_list("set-cookie"):
            self.set_cookie_headers.append(raw)
            jar = SimpleCookie()
            try:
                jar.load(raw)
            except CookieError:
                logger.warning("Ignoring unparsable Set-Cookie header")
                continue
            for name, morsel in jar.items():
                if _is_expired(morsel):
                    self.cookies.pop(name, None)
                else:
                    self.cookies[name] = morsel.value

    def relay(self, response: Response) -> Response:
        """Copy the collected ``Set-Cookie`` headers onto a portal response."""
        for raw in self.set_cookie_headers:
            response.headers.append("set-cookie", raw)
        return response


# =============================================================================
# Transport
# =============================================================================


class Transport:
    """Async HTTP transport bound to one origin resolver.

    The underlying ``httpx.AsyncClient`` is created on first use. Pass
    ``transport`` to substitute the network layer (``httpx.MockTransport``
    in tests).
    """

    def __init__(
        self,
        resolver: OriginResolver,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._resolver = resolver
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def resolver(self) -> OriginResolver:
        return self._resolver

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            # Cookies belong to each SessionContext, never to the shared client.
            self._client = httpx.AsyncClient(
                cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=[])),
                timeout=self._timeout,
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def send(
        self,
        method: str,
        path: str,
        *,
        session: SessionContext | None = None,
        headers: Mapping[str, str] | Sequence[tuple[str, str]] | None = None,
        content: bytes | str | None = None,
        files: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        """Issue one request and return the raw response, whatever its status."""
        url = self._resolver.resolve(path)
        request_headers = httpx.Headers(headers or {})
        if session is not None and session.cookies:
            request_headers["Cookie"] = session.cookie_header()

        try:
            response = await self._get_client().request(
                method,
                url,
                headers=request_headers,
                content=content,
                files=files,
                params=params,
            )
        except httpx.TransportError as exc:
            logger.warning("Backend unreachable: %s %s (%s)", method, url, exc)
            raise TransportError(method, url, str(exc) or type(exc).__name__) from exc

        if session is not None:
            session.absorb(response)
        logger.debug("%s %s -> %s", method, url, response.status_code)
        return response
