"""
tests/test_health.py -- Integration tests for GET /api/health.

Covers:
  - 200 response with status and version
  - No authentication required
  - Not rate limited
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_status_and_version(api_client):
    resp = api_client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_health_no_auth_required(api_client):
    resp = api_client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_health_is_not_rate_limited(api_client):
    for _ in range(100):
        assert api_client.get("/api/health").status_code == 200
