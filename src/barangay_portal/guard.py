# SPDX-License-Identifier: Apache-2.0
"""
Session guard: decides, per protected view, whether to render or redirect.

Each view request owns one ``SessionGuard``. The guard asks the backend who
the visitor is and applies the access decision table:

    query failed                         -> redirect to the public landing
    not authenticated                    -> redirect to the public landing
    authenticated, unrecognised role     -> redirect to the public landing
    authenticated, other portal's role   -> redirect to that portal's dashboard
    authenticated, required role         -> render

State machine per guard: PENDING -> {RENDER, REDIRECTING}, terminal. If the
view is unmounted (client gone) before the query resolves, the decision is
discarded and the guard stays PENDING.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from barangay_portal.client import ApiClient, ApiResult
    from barangay_portal.transport import SessionContext

logger = logging.getLogger(__name__)

WHOAMI_PATH = "/auth/me"
PUBLIC_LANDING = "/"


class PortalRole(str, Enum):
    RESIDENT = "resident"
    STAFF = "staff"

    @classmethod
    def parse(cls, value: Any) -> "PortalRole | None":
        """Lenient parse of a backend ``user.type``; unknown values yield None."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


DASHBOARDS: dict[PortalRole, str] = {
    PortalRole.RESIDENT: "/resident/dashboard",
    PortalRole.STAFF: "/staff/dashboard",
}


def dashboard_for(role: PortalRole) -> str:
    return DASHBOARDS[role]


def other_portal(role: PortalRole) -> PortalRole:
    return PortalRole.STAFF if role is PortalRole.RESIDENT else PortalRole.RESIDENT


# ============================================================================
# Session info
# ============================================================================


@dataclass(frozen=True)
class SessionInfo:
    authenticated: bool
    role: str | None = None  # lowercased user.type as reported, may be unknown
    user: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_result(cls, result: "ApiResult") -> "SessionInfo":
        """Read ``{authenticated, user: {type, ...}}`` without trusting its shape."""
        user = result.field("user")
        if not isinstance(user, Mapping):
            user = {}
        raw_type = user.get("type")
        role = str(raw_type).strip().lower() if raw_type else None
        return cls(
            authenticated=bool(result.field("authenticated")),
            role=role,
            user=dict(user),
        )


# ============================================================================
# Decision table
# ============================================================================


class GuardState(str, Enum):
    PENDING = "pending"
    RENDER = "render"
    REDIRECTING = "redirecting"


@dataclass(frozen=True)
class AccessDecision:
    state: GuardState
    target: str | None = None
    session: SessionInfo | None = None

    @property
    def renders(self) -> bool:
        return self.state is GuardState.RENDER


def decide(session: SessionInfo | None, required: PortalRole) -> AccessDecision:
    """Apply the access decision table. ``session=None`` means the query failed."""
    if session is None or not session.authenticated:
        return AccessDecision(GuardState.REDIRECTING, PUBLIC_LANDING, session)

    # A session without a type is taken to belong to the view's own portal.
    role = session.role or required.value
    if PortalRole.parse(role) is None:
        return AccessDecision(GuardState.REDIRECTING, PUBLIC_LANDING, session)
    if role != required.value:
        target = dashboard_for(other_portal(required))
        return AccessDecision(GuardState.REDIRECTING, target, session)

    return AccessDecision(GuardState.RENDER, None, session)


# ============================================================================
# Guard
# ============================================================================


class SessionGuard:
    """One access check for one mounted view."""

    def __init__(
        self,
        client: "ApiClient",
        required: PortalRole,
        session: "SessionContext",
    ) -> None:
        self._client = client
        self._required = required
        self._session = session
        self._state = GuardState.PENDING
        self._decision: AccessDecision | None = None
        self._mounted = True

    @property
    def required(self) -> PortalRole:
        return self._required

    @property
    def state(self) -> GuardState:
        return self._state

    @property
    def decision(self) -> AccessDecision | None:
        return self._decision

    @property
    def mounted(self) -> bool:
        return self._mounted

    def unmount(self) -> None:
        self._mounted = False

    async def _query(self) -> SessionInfo | None:
        try:
            result = await self._client.get(WHOAMI_PATH, session=self._session)
        except Exception as exc:
            logger.warning("Session query failed for %s view: %s", self._required.value, exc)
            return None
        return SessionInfo.from_result(result)

    async def run(self) -> AccessDecision | None:
        """Resolve the decision once; None when the view unmounted first."""
        if self._decision is not None:
            return self._decision
        if not self._mounted:
            return None

        try:
            info = await self._query()
        except asyncio.CancelledError:
            self._mounted = False
            raise

        if not self._mounted:
            logger.debug("Discarding %s decision for unmounted view", self._required.value)
            return None

        decision = decide(info, self._required)
        self._decision = decision
        self._state = decision.state
        logger.debug(
            "Guard %s view: %s %s",
            self._required.value,
            decision.state.value,
            decision.target or "",
        )
        return decision
