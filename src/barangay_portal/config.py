# SPDX-License-Identifier: Apache-2.0
"""
Portal configuration from environment variables.

    PORTAL_API_BASE_URL    - Backend origin (default: http://127.0.0.1:3001).
                             NEXT_PUBLIC_API_BASE_URL is honoured as a fallback.
    PORTAL_API_PREFIX      - Same-origin prefix forwarded to the backend (default: /api)
    PORTAL_TIMEOUT_SECONDS - Per-request timeout towards the backend (default: 30)
    PORTAL_BIND_HOST       - Host to bind to (default: 127.0.0.1)
    PORTAL_PORT            - Port to bind to (default: 3000)
    PORTAL_LOG_LEVEL       - Logging level for the portal and uvicorn (default: info)
"""

from __future__ import annotations

import os
from typing import Mapping

from pydantic import BaseModel, field_validator

DEFAULT_API_BASE_URL = "http://127.0.0.1:3001"


class PortalSettings(BaseModel):
    api_base_url: str = DEFAULT_API_BASE_URL
    api_prefix: str = "/api"
    timeout_seconds: float = 30.0
    bind_host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "info"

    @field_validator("api_base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError("PORTAL_API_BASE_URL must start with http:// or https://")
        return value

    @field_validator("api_prefix")
    @classmethod
    def _check_prefix(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith("/"):
            raise ValueError("PORTAL_API_PREFIX must start with '/'")
        return value

    @field_validator("timeout_seconds")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("PORTAL_TIMEOUT_SECONDS must be greater than 0")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in {"critical", "error", "warning", "info", "debug"}:
            raise ValueError(f"Unknown PORTAL_LOG_LEVEL: {value}")
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PortalSettings":
        """Build settings from the environment, leaving unset values at their defaults."""
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}

        base_url = env.get("PORTAL_API_BASE_URL") or env.get("NEXT_PUBLIC_API_BASE_URL")
        if base_url:
            values["api_base_url"] = base_url

        for field_name, var in (
            ("api_prefix", "PORTAL_API_PREFIX"),
            ("timeout_seconds", "PORTAL_TIMEOUT_SECONDS"),
            ("bind_host", "PORTAL_BIND_HOST"),
            ("port", "PORTAL_PORT"),
            ("log_level", "PORTAL_LOG_LEVEL"),
        ):
            raw = env.get(var, "").strip()
            if raw:
                values[field_name] = raw

        return cls(**values)
