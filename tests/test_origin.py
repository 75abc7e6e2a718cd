# SPDX-License-Identifier: Apache-2.0
"""Tests for the /api/* -> backend origin rewrite rule."""
from __future__ import annotations

import pytest

from barangay_portal.origin import OriginResolutionError, OriginResolver

ORIGIN = "http://localhost:3001"


class TestMatches:
    @pytest.mark.parametrize("path", ["/api", "/api/", "/api/auth/me", "/api?x=1", "/api/a/b/c?d=e"])
    def test_prefixed_paths(self, path: str) -> None:
        assert OriginResolver(ORIGIN).matches(path)

    @pytest.mark.parametrize("path", ["/", "/apis/x", "/login", "/resident/dashboard", "api/auth"])
    def test_other_paths(self, path: str) -> None:
        assert not OriginResolver(ORIGIN).matches(path)


class TestResolve:
    def test_path_is_preserved(self) -> None:
        assert OriginResolver(ORIGIN).resolve("/api/auth/me") == f"{ORIGIN}/auth/me"

    def test_query_is_preserved(self) -> None:
        resolver = OriginResolver(ORIGIN)
        assert resolver.resolve("/api/feedback?page=2&sort=desc") == f"{ORIGIN}/feedback?page=2&sort=desc"

    def test_bare_prefix_maps_to_root(self) -> None:
        assert OriginResolver(ORIGIN).resolve("/api") == f"{ORIGIN}/"

    def test_trailing_slashes_are_normalized(self) -> None:
        resolver = OriginResolver(ORIGIN + "/", "/api/")
        assert resolver.origin == ORIGIN
        assert resolver.prefix == "/api"
        assert resolver.resolve("/api/submissions") == f"{ORIGIN}/submissions"

    def test_custom_prefix(self) -> None:
        resolver = OriginResolver("https://barangay.example.ph", "/backend")
        assert resolver.resolve("/backend/stats") == "https://barangay.example.ph/stats"

    def test_unmatched_path_raises(self) -> None:
        with pytest.raises(OriginResolutionError) as excinfo:
            OriginResolver(ORIGIN).resolve("/staff/dashboard")
        assert excinfo.value.path == "/staff/dashboard"
        assert excinfo.value.prefix == "/api"

    def test_resolution_error_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            OriginResolver(ORIGIN).resolve("/apiary")
