"""
tests/test_health.py -- Integration tests for GET /api/v1/health and app-wide behaviour.

Covers:
  - 200 response with status and version
  - No authentication required
  - Unknown Host header rejected by TrustedHostMiddleware
  - Auth-protected /docs
"""

from __future__ import annotations


def test_health_returns_200(api):
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "version" in data


def test_health_no_auth_required(api):
    resp = api.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_untrusted_host_rejected(api):
    resp = api.client.get("/api/v1/health", headers={"Host": "evil.example.com"})
    assert resp.status_code == 400


def test_docs_require_auth(api):
    assert api.client.get("/docs").status_code == 401
    assert api.client.get("/docs", headers=api.bearer()).status_code == 200
