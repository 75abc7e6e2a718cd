# SPDX-License-Identifier: Apache-2.0
"""
Unified API client: the one call application code uses for JSON endpoints.

Every call is routed through the same-origin API prefix, carries the session
cookies and a JSON content type, and comes back as a tagged result:

    Success(status, body)      2xx
    HttpFailure(status, body)  anything else

Non-2xx statuses are data, not exceptions; only an unreachable backend
raises (``TransportError``). Whether a 2xx with ``{"ok": false}`` counts as
success is the caller's decision.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Union

import httpx

from barangay_portal.negotiation import Body, Structured, negotiate_response
from barangay_portal.transport import SessionContext, Transport


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True, slots=True)
class _Result:
    status: int
    body: Body

    @property
    def payload(self) -> Any:
        """The decoded value, or the raw text for unstructured bodies."""
        if isinstance(self.body, Structured):
            return self.body.value
        return self.body.text

    def field(self, name: str, default: Any = None) -> Any:
        """Read a conventional field (``ok``, ``message``, ``user``...) off the body.

        Text bodies, non-object JSON and absent keys all yield ``default``.
        """
        if isinstance(self.body, Structured) and isinstance(self.body.value, Mapping):
            return self.body.value.get(name, default)
        return default


@dataclass(frozen=True, slots=True)
class Success(_Result):
    pass


@dataclass(frozen=True, slots=True)
class HttpFailure(_Result):
    pass


ApiResult = Union[Success, HttpFailure]


def to_result(response: httpx.Response) -> ApiResult:
    body = negotiate_response(response)
    if response.is_success:
        return Success(response.status_code, body)
    return HttpFailure(response.status_code, body)


# ============================================================================
# Client
# ============================================================================


class ApiClient:
    """JSON client over a ``Transport``; owns default headers and credentials."""

    DEFAULT_HEADERS = {"Content-Type": "application/json"}

    def __init__(self, transport: Transport, *, prefix: str = "/api") -> None:
        self._transport = transport
        self._prefix = prefix.rstrip("/")

    @property
    def transport(self) -> Transport:
        return self._transport

    def route(self, path: str) -> str:
        """Prepend the API prefix unless ``path`` already carries it."""
        route = path.partition("?")[0]
        if route == self._prefix or route.startswith(self._prefix + "/"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self._prefix}{path}"

    async def call(
        self,
        path: str,
        *,
        session: SessionContext,
        method: str = "GET",
        payload: Any = None,
        content: str | bytes | None = None,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        merged = httpx.Headers(self.DEFAULT_HEADERS)
        if headers:
            merged.update(headers)
        if payload is not None:
            content = json.dumps(payload)

        response = await self._transport.send(
            method,
            self.route(path),
            session=session,
            headers=merged,
            content=content,
            params=params,
        )
        return to_result(response)

    async def get(self, path: str, *, session: SessionContext, **kwargs: Any) -> ApiResult:
        return await self.call(path, session=session, method="GET", **kwargs)

    async def post(self, path: str, *, session: SessionContext, **kwargs: Any) -> ApiResult:
        return await self.call(path, session=session, method="POST", **kwargs)

    # ------------------------------------------------------------------------
    # Submission helpers (contact page)
    # ------------------------------------------------------------------------

    async def create_submission(self, payload: Any, *, session: SessionContext) -> ApiResult:
        return await self.post("/submissions", session=session, payload=payload)

    async def get_submissions(self, *, session: SessionContext) -> ApiResult:
        return await self.get("/submissions", session=session)
