# SPDX-License-Identifier: Apache-2.0
"""
Barangay portal web app: role-gated views in front of the backend API.

Serves the public landing and login pages, the resident and staff portal
views, and forwards every /api/* request to the backend origin so the
browser only ever talks to one origin.

Run with: uvicorn barangay_portal.app:app --host 127.0.0.1 --port 3000

Primary UI:  http://localhost:3000         (landing)
Sign in:     http://localhost:3000/login
Health:      http://localhost:3000/health

Configuration via environment variables, see ``barangay_portal.config``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable
from urllib.parse import quote

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from barangay_portal import __version__, auth, pages
from barangay_portal.client import ApiClient
from barangay_portal.config import PortalSettings
from barangay_portal.guard import (
    AccessDecision,
    GuardState,
    PortalRole,
    SessionGuard,
    dashboard_for,
)
from barangay_portal.negotiation import is_structured
from barangay_portal.origin import OriginResolver, forward
from barangay_portal.transfers import (
    Blob,
    FileDownloader,
    FileUploader,
    SelectedFile,
    TransferError,
    UploadValidationError,
)
from barangay_portal.transport import SessionContext, Transport, TransportError

logger = logging.getLogger(__name__)

# ============================================================================
# Configuration from environment
# ============================================================================

SETTINGS = PortalSettings.from_env()
API_PREFIX = SETTINGS.api_prefix

FEEDBACK_EXPORT_FAILED = (
    "Failed to download Resident Feedback. Please try again or contact support."
)
QR_DOWNLOAD_FAILED = "Failed to download the QR code. Please try again."
BUDGET_UPLOADED = "Budget Transparency Document uploaded."
UNREACHABLE = "Unable to reach server"

# ============================================================================
# Transport setup (lazy init on first request)
# ============================================================================

_transport: Transport | None = None
_client: ApiClient | None = None


def _get_transport() -> Transport:
    global _transport
    if _transport is None:
        resolver = OriginResolver(SETTINGS.api_base_url, API_PREFIX)
        _transport = Transport(resolver, timeout_seconds=SETTINGS.timeout_seconds)
    return _transport


def _get_client() -> ApiClient:
    global _client
    if _client is None:
        _client = ApiClient(_get_transport(), prefix=API_PREFIX)
    return _client


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    if _transport is not None:
        await _transport.close()


# ============================================================================
# Application setup
# ============================================================================

app = FastAPI(
    title="Barangay Portal",
    description="Resident and staff portal views with a same-origin API gateway",
    version=__version__,
    lifespan=_lifespan,
)


def _session_for(request: Request) -> SessionContext:
    return SessionContext.from_cookies(request.cookies)


def _api_path(path: str) -> str:
    return f"{API_PREFIX}{path}"


# ============================================================================
# Access checks
# ============================================================================


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _check_access(
    request: Request,
    role: PortalRole,
    session: SessionContext,
) -> AccessDecision | None:
    """Run the session guard; None when the client left before it resolved."""
    guard = SessionGuard(_get_client(), role, session)
    run = asyncio.ensure_future(guard.run())
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _ = await asyncio.wait({run, watcher}, return_when=asyncio.FIRST_COMPLETED)
        if run not in done:
            guard.unmount()
            run.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await run
            return None
        return run.result()
    finally:
        watcher.cancel()


def _respond(
    decision: AccessDecision | None,
    render: Callable[[AccessDecision], Response],
) -> Response:
    """Nothing for a discarded check, a redirect, or the rendered view."""
    if decision is None:
        response = Response(status_code=204)
    elif decision.state is GuardState.REDIRECTING:
        response = RedirectResponse(decision.target or "/", status_code=303)
    else:
        response = render(decision)
    # Session-dependent; never cached across navigations.
    response.headers["Cache-Control"] = "no-store"
    return response


# ============================================================================
# Public pages
# ============================================================================


@app.get("/", response_class=HTMLResponse)
async def landing() -> HTMLResponse:
    return HTMLResponse(pages.landing_page())


@app.get("/login", response_class=HTMLResponse)
async def login_form() -> HTMLResponse:
    return HTMLResponse(pages.login_page())


@app.post("/login")
async def login_submit(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    userType: str = Form(PortalRole.RESIDENT.value),
) -> Response:
    session = _session_for(request)
    hint = PortalRole.parse(userType) or PortalRole.RESIDENT
    outcome = await auth.login(
        _get_client(), session, email=email, password=password, user_type=hint
    )
    if outcome.ok:
        response: Response = RedirectResponse(outcome.redirect_to, status_code=303)
    else:
        response = HTMLResponse(
            pages.login_page(outcome.error, email=email, user_type=hint.value),
        )
    return session.relay(response)


@app.post("/logout")
async def logout(request: Request) -> Response:
    session = _session_for(request)
    target = await auth.logout(_get_client(), session)
    return session.relay(RedirectResponse(target, status_code=303))


# ============================================================================
# Portal views
# ============================================================================

RESIDENT_VIEWS: dict[str, str] = {
    "/resident/dashboard": "Resident Dashboard",
    "/resident/profile": "My Profile",
    "/resident/complaints/new": "File a Complaint",
    "/resident/documents/request": "Request Documents",
}

STAFF_VIEWS: dict[str, str] = {
    "/staff/dashboard": "Staff Dashboard",
    "/staff/complaints": "Complaints",
    "/staff/documents/verify": "Verify Documents",
    "/staff/profile": "Staff Profile",
    "/staff/settings": "Settings",
    "/staff/ml-analytics": "Analytics",
}


def _register_view(path: str, title: str, role: PortalRole) -> None:
    async def view(request: Request) -> Response:
        session = _session_for(request)
        decision = await _check_access(request, role, session)
        response = _respond(
            decision,
            lambda d: HTMLResponse(pages.portal_view(title, role, d.session.user)),
        )
        return session.relay(response)

    view.__name__ = "view_" + path.strip("/").replace("/", "_").replace("-", "_")
    app.add_api_route(path, view, methods=["GET"], response_class=HTMLResponse)


for _path, _title in RESIDENT_VIEWS.items():
    _register_view(_path, _title, PortalRole.RESIDENT)
for _path, _title in STAFF_VIEWS.items():
    _register_view(_path, _title, PortalRole.STAFF)


# ============================================================================
# Transfers
# ============================================================================


def _attachment(blob: Blob, filename: str) -> Response:
    """Save action: hand the spooled file to the browser as a download."""
    return Response(
        content=blob.path.read_bytes(),
        media_type=blob.content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _guarded_download(
    request: Request,
    role: PortalRole,
    downloader: FileDownloader,
    failure_message: str,
) -> Response:
    session = _session_for(request)
    decision = await _check_access(request, role, session)
    if decision is None or not decision.renders:
        return session.relay(_respond(decision, lambda d: Response(status_code=204)))

    try:
        response = await downloader.download(session)
    except (TransferError, TransportError) as exc:
        logger.error("Download failed: %s", exc)
        response = HTMLResponse(
            pages.alert_page(failure_message, back=dashboard_for(role)),
            status_code=502,
        )
    return session.relay(response)


@app.get("/staff/feedback/export")
async def export_feedback(request: Request) -> Response:
    downloader = FileDownloader(
        _get_transport(),
        _api_path("/feedbacks/export"),
        stem="resident-feedback",
        suffix=".csv",
        save=_attachment,
    )
    return await _guarded_download(request, PortalRole.STAFF, downloader, FEEDBACK_EXPORT_FAILED)


@app.get("/resident/documents/qr/{submission_id}")
async def download_submission_qr(submission_id: str, request: Request) -> Response:
    downloader = FileDownloader(
        _get_transport(),
        _api_path(f"/submissions/{quote(submission_id, safe='')}/qr"),
        stem=f"Document-{submission_id}-QR",
        suffix=".png",
        dated=False,
        save=_attachment,
    )
    return await _guarded_download(request, PortalRole.RESIDENT, downloader, QR_DOWNLOAD_FAILED)


@app.post("/staff/budget-transparency/upload")
async def upload_budget_document(
    request: Request,
    file: UploadFile | None = File(None),
) -> Response:
    session = _session_for(request)
    decision = await _check_access(request, PortalRole.STAFF, session)
    if decision is None or not decision.renders:
        return session.relay(_respond(decision, lambda d: Response(status_code=204)))

    back = dashboard_for(PortalRole.STAFF)
    uploader = FileUploader(
        _get_transport(),
        _api_path("/budget-transparency/upload"),
        success_message=BUDGET_UPLOADED,
    )
    try:
        if file is not None and file.filename:
            uploader.select(
                SelectedFile(
                    name=file.filename,
                    content=await file.read(),
                    content_type=file.content_type or "application/octet-stream",
                )
            )
        outcome = await uploader.submit(session)
    except UploadValidationError as exc:
        response: Response = HTMLResponse(pages.alert_page(exc.message, back), status_code=400)
    except TransferError as exc:
        logger.error("Budget document upload failed: %s", exc)
        response = HTMLResponse(pages.alert_page(exc.message, back), status_code=502)
    except TransportError:
        response = HTMLResponse(pages.alert_page(UNREACHABLE, back), status_code=502)
    else:
        message = outcome.message if outcome is not None else BUDGET_UPLOADED
        response = HTMLResponse(pages.alert_page(message, back))
    return session.relay(response)


# ============================================================================
# API gateway
# ============================================================================


def _relabel(upstream: Any) -> Response:
    """Return the backend body as JSON or plain text, status preserved."""
    if is_structured(upstream.headers.get("content-type")):
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            media_type="application/json",
        )
    return Response(
        content=upstream.text,
        status_code=upstream.status_code,
        media_type="text/plain",
    )


@app.get(API_PREFIX + "/feedback")
async def feedback_list(page: str | None = None) -> Response:
    params = {"page": page} if page else None
    try:
        upstream = await _get_transport().send("GET", _api_path("/feedback"), params=params)
    except TransportError:
        return JSONResponse(status_code=502, content={"detail": UNREACHABLE})
    return _relabel(upstream)


@app.post(API_PREFIX + "/feedback")
async def feedback_submit(request: Request) -> Response:
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"detail": "Request body must be JSON"})
    try:
        upstream = await _get_transport().send(
            "POST",
            _api_path("/feedback"),
            headers={"Content-Type": "application/json"},
            content=json.dumps(body),
        )
    except TransportError:
        return JSONResponse(status_code=502, content={"detail": UNREACHABLE})
    return _relabel(upstream)


@app.api_route(
    API_PREFIX + "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
)
async def api_gateway(path: str, request: Request) -> Response:
    """Forward to the backend origin, path, query, headers and body unchanged."""
    return await forward(_get_transport(), request)


# ============================================================================
# Health
# ============================================================================


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint; any HTTP answer from the backend counts as connected."""
    connected = False
    try:
        await _get_transport().send("GET", API_PREFIX)
        connected = True
    except TransportError:
        pass

    return {
        "status": "healthy" if connected else "degraded",
        "version": __version__,
        "backend": {
            "origin": SETTINGS.api_base_url,
            "connected": connected,
        },
    }


# ============================================================================
# CLI Entry Point
# ============================================================================


def main() -> None:
    """Run the portal server."""
    import uvicorn

    logging.basicConfig(level=SETTINGS.log_level.upper())
    uvicorn.run(
        "barangay_portal.app:app",
        host=SETTINGS.bind_host,
        port=SETTINGS.port,
        log_level=SETTINGS.log_level,
    )


if __name__ == "__main__":
    main()
