# SPDX-License-Identifier: Apache-2.0
"""
Response body negotiation. Pure module, no I/O.

Turns a response body into structured JSON or opaque text. Negotiation never
raises: a malformed JSON body degrades to its raw text, and a text body that
happens to parse as JSON is promoted. ``is_structured`` reports what the
backend declared, for callers that relabel bodies.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    import httpx

STRUCTURED_MARKER = "application/json"


# ============================================================================
# Body variants
# ============================================================================


@dataclass(frozen=True, slots=True)
class Structured:
    value: Any


@dataclass(frozen=True, slots=True)
class Text:
    text: str


Body = Union[Structured, Text]


# ============================================================================
# Negotiation
# ============================================================================


def is_structured(content_type: str | None) -> bool:
    return STRUCTURED_MARKER in (content_type or "").lower()


def negotiate(content_type: str | None, text: str) -> Body:
    """Decode ``text`` as JSON when possible, otherwise keep it as text.

    A declared JSON body and an undeclared one get the same best-effort
    parse, so ``content_type`` never changes the outcome. It is accepted for
    callers that negotiate straight off a response; use ``is_structured`` to
    branch on the declaration itself.
    """
    decoded = _try_json(text)
    return Text(text) if decoded is None else decoded


def _try_json(text: str) -> Structured | None:
    try:
        return Structured(json.loads(text))
    except (ValueError, RecursionError):
        return None


def negotiate_response(response: "httpx.Response") -> Body:
    return negotiate(response.headers.get("content-type"), response.text)
