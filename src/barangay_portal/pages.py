# SPDX-License-Identifier: Apache-2.0
"""Minimal HTML shells for the portal views. Layout and styling live elsewhere."""

from __future__ import annotations

import json
from html import escape
from typing import Any, Mapping

from barangay_portal.guard import PortalRole


def _js(value: str) -> str:
    return json.dumps(value).replace("<", "\\u003c")


def _document(title: str, body: str) -> str:
    return (
        "<!doctype html>\n"
        '<html lang="en"><head><meta charset="utf-8">'
        f"<title>{escape(title)} | Barangay Portal</title></head>"
        f"<body>{body}</body></html>"
    )


def landing_page() -> str:
    return _document(
        "Welcome",
        '<main id="landing"><h1>Barangay Portal</h1>'
        '<p>Access your barangay services.</p>'
        '<a href="/login">Sign in</a></main>',
    )


def login_page(error: str | None = None, email: str = "", user_type: str = "resident") -> str:
    options = "".join(
        f'<option value="{role.value}"{" selected" if role.value == user_type else ""}>'
        f"{role.value.title()}</option>"
        for role in PortalRole
    )
    error_html = f'<p class="error" role="alert">{escape(error)}</p>' if error else ""
    return _document(
        "Sign in",
        '<form id="login" method="post" action="/login">'
        f"<h1>Sign in</h1>{error_html}"
        f'<input name="email" type="email" placeholder="Email" value="{escape(email)}" required>'
        '<input name="password" type="password" placeholder="Password" required>'
        f'<label for="portal">Portal</label><select id="portal" name="userType">{options}</select>'
        "<button>Sign in</button></form>",
    )


def portal_view(title: str, role: PortalRole, user: Mapping[str, Any]) -> str:
    name = " ".join(
        str(part) for part in (user.get("firstName"), user.get("lastName")) if part
    ) or str(user.get("email") or "")
    return _document(
        title,
        f'<nav data-portal="{role.value}"><span class="user">{escape(name)}</span>'
        '<form method="post" action="/logout"><button>Logout</button></form></nav>'
        f'<main id="view"><h1>{escape(title)}</h1></main>',
    )


def alert_page(message: str, back: str) -> str:
    """Blocking notification for failed transfers, then back to the view."""
    return _document(
        "Notice",
        f'<p role="alert">{escape(message)}</p>'
        f"<script>alert({_js(message)});"
        f"window.location.replace({_js(back)});</script>",
    )
