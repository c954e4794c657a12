#!/usr/bin/env python3
"""
Basic health endpoint tests for CI/CD pipeline.
Tests fundamental application functionality without external dependencies.
"""

import pytest
from fastapi.testclient import TestClient

from booking_engine.main import app


def test_health_endpoint():
    """Test that health endpoint returns 200 and proper structure"""
    client = TestClient(app)
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


@pytest.mark.integration
async def test_ready_endpoint(client):
    """Readiness runs a query against the database"""
    response = await client.get("/readyz")

    assert response.status_code == 200
    assert response.json() == {"db": "ok"}


def test_openapi_lists_channel_routes():
    """Every channel adapter is mounted"""
    client = TestClient(app)
    paths = client.get("/openapi.json").json()["paths"]

    assert "/public/v1/orgs/{org_id}/availability" in paths
    assert "/integrations/voice/{org_id}/create-booking" in paths
    assert "/automation/v1/bookings" in paths
    assert "/staff/v1/orgs/{org_id}/holds" in paths


def test_unknown_route_is_404():
    client = TestClient(app)
    assert client.get("/nope").status_code == 404
