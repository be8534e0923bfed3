"""Tests for health, metrics, authentication and error mapping"""
import pytest
from jose import jwt

from habitquest import config
from habitquest.api.server import status_code_for
from habitquest.exceptions import (
    ConfigurationError,
    ConflictError,
    HabitQuestError,
    InsightParseError,
    InsightServiceError,
    InsufficientXPError,
)


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["store"] == "connected"


@pytest.mark.asyncio
async def test_metrics_endpoint(client, auth_headers, signup):
    await signup("alice")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "habitquest_http_requests_total" in response.text
    assert 'endpoint="/api/v1/users"' in response.text
    assert 'habitquest_open_challenges{status="pending"} 0.0' in response.text


@pytest.mark.asyncio
async def test_missing_token(client):
    response = await client.get("/api/v1/users/alice")

    assert response.status_code == 401
    assert response.json()["error"] == "AuthenticationError"


@pytest.mark.asyncio
async def test_bad_signature(client):
    token = jwt.encode({"sub": "alice"}, "some-other-secret", algorithm="HS256")

    response = await client.get("/api/v1/users/alice", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_token_without_subject(client):
    token = jwt.encode({"email": "alice@example.com"}, "test-secret", algorithm="HS256")

    response = await client.get("/api/v1/users/alice", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_audience_is_checked_when_configured(client, monkeypatch):
    monkeypatch.setattr(config, "AUTH_JWT_AUDIENCE", "habitquest")
    token = jwt.encode({"sub": "alice", "aud": "someone-else"}, "test-secret", algorithm="HS256")

    response = await client.get("/api/v1/users/alice", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unconfigured_secret(client, auth_headers, monkeypatch):
    headers = auth_headers("alice")
    monkeypatch.setattr(config, "AUTH_JWT_SECRET", "")

    response = await client.get("/api/v1/users/alice", headers=headers)

    assert response.status_code == 503
    assert response.json()["error"] == "ConfigurationError"


@pytest.mark.parametrize("error,status_code", [
    (InsufficientXPError(required=10, available=5), 400),
    (ConflictError("raced"), 409),
    (InsightParseError("bad"), 502),
    (InsightServiceError("down"), 502),
    (ConfigurationError("missing"), 503),
    (HabitQuestError("unknown"), 500),
])
def test_status_code_for(error, status_code):
    assert status_code_for(error) == status_code
