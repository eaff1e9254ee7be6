"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - database and sessions components report 'ok' when both stores answer
  - a failing store degrades the status instead of failing the request
  - No authentication required
"""

from __future__ import annotations

from api.main import app


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"] == {"app": "ok", "database": "ok", "sessions": "ok"}


def test_health_reports_degraded_session_store(api_client, monkeypatch):
    """A store that cannot be reached shows up as 'error' and status 'degraded'."""

    def broken_ping():
        raise RuntimeError("session store unreachable")

    monkeypatch.setattr(app.state.sessions, "ping", broken_ping)
    data = api_client.get("/api/v1/health").json()
    assert data["status"] == "degraded"
    assert data["components"]["sessions"] == "error"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
