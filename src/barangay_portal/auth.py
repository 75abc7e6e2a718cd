# SPDX-License-Identifier: Apache-2.0
"""Login and logout flows on top of the unified API client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from barangay_portal.client import ApiClient
from barangay_portal.guard import PortalRole, dashboard_for
from barangay_portal.transport import SessionContext, TransportError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
LOGOUT_PATH = "/auth/logout"
LOGIN_PAGE = "/login"

MISSING_CREDENTIALS = "Please enter both email and password"
INVALID_CREDENTIALS = "Invalid credentials"
UNREACHABLE = "Unable to login"


@dataclass(frozen=True)
class LoginOutcome:
    redirect_to: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.redirect_to is not None


async def login(
    client: ApiClient,
    session: SessionContext,
    *,
    email: str,
    password: str,
    user_type: PortalRole,
) -> LoginOutcome:
    """Sign in and pick the dashboard for the role the backend assigned.

    ``user_type`` is only a hint sent to the backend; when the backend
    reports a ``user.type`` that one wins.
    """
    if not email or not password:
        return LoginOutcome(error=MISSING_CREDENTIALS)

    try:
        result = await client.post(
            LOGIN_PATH,
            session=session,
            payload={"email": email, "password": password, "userType": user_type.value},
        )
    except TransportError:
        return LoginOutcome(error=UNREACHABLE)

    if not result.field("ok"):
        message = result.field("message")
        return LoginOutcome(error=str(message) if message else INVALID_CREDENTIALS)

    user = result.field("user")
    assigned = PortalRole.parse(user.get("type")) if isinstance(user, Mapping) else None
    role = assigned or user_type
    logger.info("Login accepted for %s portal", role.value)
    return LoginOutcome(redirect_to=dashboard_for(role))


async def logout(client: ApiClient, session: SessionContext) -> str:
    """End the backend session; returns where to send the browser next."""
    try:
        await client.post(LOGOUT_PATH, session=session)
    except TransportError as exc:
        logger.warning("Logout call failed, leaving anyway: %s", exc)
    return LOGIN_PAGE
