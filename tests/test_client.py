# SPDX-License-Identifier: Apache-2.0
"""Tests for the transport, session context and unified API client."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from barangay_portal.client import ApiClient, HttpFailure, Success
from barangay_portal.negotiation import Structured, Text
from barangay_portal.origin import OriginResolutionError, OriginResolver
from barangay_portal.transport import SessionContext, Transport, TransportError

ORIGIN = "http://backend.test:3001"


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def seen() -> list[httpx.Request]:
    return []


def make_client(handler, seen: list[httpx.Request] | None = None) -> ApiClient:
    def recording(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)

    transport = Transport(OriginResolver(ORIGIN), transport=httpx.MockTransport(recording))
    return ApiClient(transport)


def ok_json(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True})


# ============================================================================
# Routing
# ============================================================================


class TestRouting:
    def test_prefix_is_prepended(self) -> None:
        client = make_client(ok_json)
        assert client.route("/auth/me") == "/api/auth/me"

    def test_prefixed_path_is_kept(self) -> None:
        client = make_client(ok_json)
        assert client.route("/api/auth/me") == "/api/auth/me"

    def test_bare_prefix_is_kept(self) -> None:
        client = make_client(ok_json)
        assert client.route("/api") == "/api"
        assert client.route("/api?page=2") == "/api?page=2"

    def test_lookalike_prefix_is_not_kept(self) -> None:
        client = make_client(ok_json)
        assert client.route("/apiary") == "/api/apiary"

    def test_missing_leading_slash(self) -> None:
        client = make_client(ok_json)
        assert client.route("submissions") == "/api/submissions"

    def test_call_reaches_backend_origin(self, seen) -> None:
        client = make_client(ok_json, seen)
        asyncio.run(client.get("/residents/lookup?q=cruz", session=SessionContext()))
        assert str(seen[0].url) == f"{ORIGIN}/residents/lookup?q=cruz"

    def test_params_are_appended(self, seen) -> None:
        client = make_client(ok_json, seen)
        asyncio.run(client.get("/submissions", session=SessionContext(), params={"filter": "open"}))
        assert seen[0].url.params["filter"] == "open"


# ============================================================================
# Headers and credentials
# ============================================================================


class TestHeadersAndCredentials:
    def test_json_content_type_by_default(self, seen) -> None:
        client = make_client(ok_json, seen)
        asyncio.run(client.post("/feedback", session=SessionContext(), payload={"rating": 5}))
        assert seen[0].headers["content-type"] == "application/json"
        assert json.loads(seen[0].content) == {"rating": 5}

    def test_content_type_can_be_overridden(self, seen) -> None:
        client = make_client(ok_json, seen)
        asyncio.run(client.post(
            "/notes",
            session=SessionContext(),
            content="hello",
            headers={"content-type": "text/plain"},
        ))
        assert seen[0].headers.get_list("content-type") == ["text/plain"]

    def test_session_cookies_are_attached(self, seen) -> None:
        client = make_client(ok_json, seen)
        session = SessionContext.from_cookies({"sid": "abc", "csrf": "t1"})
        asyncio.run(client.get("/auth/me", session=session))
        assert seen[0].headers["cookie"] == "sid=abc; csrf=t1"

    def test_no_cookie_header_without_cookies(self, seen) -> None:
        client = make_client(ok_json, seen)
        asyncio.run(client.get("/auth/me", session=SessionContext()))
        assert "cookie" not in seen[0].headers


# ============================================================================
# Results
# ============================================================================


class TestResults:
    def test_success_round_trip(self) -> None:
        payload = {"authenticated": True, "user": {"type": "resident", "email": "a@b.com"}}
        client = make_client(lambda r: httpx.Response(200, json=payload))
        result = asyncio.run(client.get("/auth/me", session=SessionContext()))
        assert isinstance(result, Success)
        assert result.body == Structured(payload)
        assert result.payload == payload

    def test_non_2xx_is_returned_not_raised(self) -> None:
        client = make_client(lambda r: httpx.Response(401, json={"ok": False, "message": "bad creds"}))
        result = asyncio.run(client.post("/auth/login", session=SessionContext(), payload={}))
        assert isinstance(result, HttpFailure)
        assert result.status == 401
        assert result.field("message") == "bad creds"

    def test_html_error_page_is_text(self) -> None:
        page = "<html>Service Unavailable</html>"
        client = make_client(lambda r: httpx.Response(503, text=page, headers={"content-type": "text/html"}))
        result = asyncio.run(client.get("/stats/dashboard", session=SessionContext()))
        assert isinstance(result, HttpFailure)
        assert result.body == Text(page)

    def test_fields_on_text_body_are_absent(self) -> None:
        client = make_client(lambda r: httpx.Response(200, text="OK"))
        result = asyncio.run(client.get("/ping", session=SessionContext()))
        assert result.field("ok") is None
        assert result.field("user", {}) == {}

    def test_fields_on_list_body_are_absent(self) -> None:
        client = make_client(lambda r: httpx.Response(200, json=[1, 2, 3]))
        result = asyncio.run(client.get("/submissions", session=SessionContext()))
        assert result.field("ok") is None
        assert result.payload == [1, 2, 3]

    def test_redirect_status_is_a_failure(self) -> None:
        client = make_client(lambda r: httpx.Response(302, headers={"location": "/login"}))
        result = asyncio.run(client.get("/auth/me", session=SessionContext()))
        assert isinstance(result, HttpFailure)
        assert result.status == 302


# ============================================================================
# Transport failures
# ============================================================================


class TestTransportFailures:
    def test_connection_error_propagates(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(refuse)
        with pytest.raises(TransportError) as excinfo:
            asyncio.run(client.get("/auth/me", session=SessionContext()))
        assert excinfo.value.method == "GET"
        assert excinfo.value.url == f"{ORIGIN}/auth/me"
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)

    def test_timeout_is_a_transport_error(self) -> None:
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(slow)
        with pytest.raises(TransportError):
            asyncio.run(client.get("/auth/me", session=SessionContext()))

    def test_path_outside_prefix_is_rejected(self) -> None:
        transport = Transport(OriginResolver(ORIGIN), transport=httpx.MockTransport(ok_json))
        with pytest.raises(OriginResolutionError):
            asyncio.run(transport.send("GET", "/auth/me"))


# ============================================================================
# Session context
# ============================================================================


class TestSessionContext:
    def test_absorbs_new_cookie(self) -> None:
        client = make_client(
            lambda r: httpx.Response(200, json={"ok": True}, headers={"set-cookie": "sid=new; Path=/; HttpOnly"})
        )
        session = SessionContext()
        asyncio.run(client.post("/auth/login", session=session, payload={}))
        assert session.cookies == {"sid": "new"}
        assert session.set_cookie_headers == ["sid=new; Path=/; HttpOnly"]

    def test_max_age_zero_deletes_cookie(self) -> None:
        client = make_client(
            lambda r: httpx.Response(200, json={"ok": True}, headers={"set-cookie": "sid=; Max-Age=0; Path=/"})
        )
        session = SessionContext.from_cookies({"sid": "abc", "theme": "dark"})
        asyncio.run(client.post("/auth/logout", session=session))
        assert session.cookies == {"theme": "dark"}

    def test_past_expires_deletes_cookie(self) -> None:
        client = make_client(lambda r: httpx.Response(
            200, json={"ok": True}, headers={"set-cookie": "sid=; Expires=Thu, 01 Jan 1970 00:00:00 GMT; Path=/"}
        ))
        session = SessionContext.from_cookies({"sid": "abc", "theme": "dark"})
        asyncio.run(client.post("/auth/logout", session=session))
        assert session.cookies == {"theme": "dark"}

    def test_future_expires_keeps_cookie(self) -> None:
        client = make_client(lambda r: httpx.Response(
            200, json={"ok": True}, headers={"set-cookie": "sid=new; Expires=Fri, 31 Dec 2099 23:59:59 GMT; Path=/"}
        ))
        session = SessionContext()
        asyncio.run(client.post("/auth/login", session=session, payload={}))
        assert session.cookies == {"sid": "new"}

    def test_max_age_wins_over_expires(self) -> None:
        header = "sid=kept; Max-Age=3600; Expires=Thu, 01 Jan 1970 00:00:00 GMT; Path=/"
        client = make_client(lambda r: httpx.Response(200, json={}, headers={"set-cookie": header}))
        session = SessionContext()
        asyncio.run(client.get("/auth/me", session=session))
        assert session.cookies == {"sid": "kept"}

    def test_multiple_set_cookie_headers(self) -> None:
        headers = [("set-cookie", "sid=1; Path=/"), ("set-cookie", "csrf=2; Path=/")]
        client = make_client(lambda r: httpx.Response(200, json={}, headers=headers))
        session = SessionContext()
        asyncio.run(client.get("/auth/me", session=session))
        assert session.cookies == {"sid": "1", "csrf": "2"}
        assert len(session.set_cookie_headers) == 2

    def test_relay_copies_raw_headers(self) -> None:
        from fastapi.responses import Response

        session = SessionContext(set_cookie_headers=["sid=1; Path=/", "csrf=2; Path=/"])
        response = session.relay(Response())
        assert response.headers.getlist("set-cookie") == ["sid=1; Path=/", "csrf=2; Path=/"]


# ============================================================================
# Submission helpers
# ============================================================================


class TestSubmissionHelpers:
    def test_create_submission_posts_json(self, seen) -> None:
        client = make_client(lambda r: httpx.Response(201, json={"id": 7}), seen)
        result = asyncio.run(client.create_submission({"type": "complaint"}, session=SessionContext()))
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/submissions"
        assert result.field("id") == 7

    def test_get_submissions(self, seen) -> None:
        client = make_client(lambda r: httpx.Response(200, json=[]), seen)
        asyncio.run(client.get_submissions(session=SessionContext()))
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/submissions"
