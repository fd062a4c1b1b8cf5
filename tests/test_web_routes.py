"""
tests/test_web_routes.py -- Integration tests for the browser frontend routes.

These tests exercise _require_auth() end-to-end through the real ASGI stack
using api_client (follow_redirects=False) so redirect Location headers stay
visible.

Coverage:
  - Unauthenticated GET / -> 302 /login?next=/
  - Authenticated GET / renders the timetable shell
  - GET /login renders the form; already-authenticated visitors are redirected
  - next= is always a relative path (open-redirect prevention)
  - Static scripts are served
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def logged_in(api_client: TestClient) -> Generator[TestClient, None, None]:
    resp = api_client.post("/api/authenticate/test", json={"password": "passwd", "session": 1})
    assert resp.status_code == 200
    yield api_client
    api_client.cookies.clear()


class TestIndex:
    def test_unauthenticated_redirects_to_login(self, api_client: TestClient) -> None:
        resp = api_client.get("/")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?next=/"

    def test_authenticated_renders_timetable(self, logged_in: TestClient) -> None:
        resp = logged_in.get("/", params={"cls": "10a"})
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert 'id="vplan"' in resp.text
        assert 'value="10a"' in resp.text
        assert "/static/scripts/vplan.js" in resp.text

    def test_class_param_is_escaped(self, logged_in: TestClient) -> None:
        resp = logged_in.get("/", params={"cls": '"><script>'})
        assert "<script>\"" not in resp.text
        assert "&#34;&gt;&lt;script&gt;" in resp.text


class TestLoginPage:
    def test_renders_form(self, api_client: TestClient) -> None:
        resp = api_client.get("/login")
        assert resp.status_code == 200
        assert 'id="login-form"' in resp.text
        assert 'data-next="/"' in resp.text

    @pytest.mark.parametrize("target", ["https://evil.example", "//evil.example", "javascript:alert(1)"])
    def test_offsite_next_is_ignored(self, api_client: TestClient, target: str) -> None:
        resp = api_client.get("/login", params={"next": target})
        assert 'data-next="/"' in resp.text

    def test_authenticated_visitor_is_redirected(self, logged_in: TestClient) -> None:
        resp = logged_in.get("/login", params={"next": "/?cls=7b"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/?cls=7b"


def test_static_scripts_are_served(api_client: TestClient) -> None:
    resp = api_client.get("/static/scripts/api.js")
    assert resp.status_code == 200
    assert "If-None-Match" in resp.text
