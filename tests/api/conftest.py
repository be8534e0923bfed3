"""API test fixtures: in-process app, in-memory store, signed tokens"""
from unittest.mock import AsyncMock

import httpx
import pytest
from jose import jwt

from habitquest import config
from habitquest.api.middleware import limiter
from habitquest.api.server import app
from habitquest.db.memory_store import InMemoryDocumentStore
from habitquest.services import init_container, reset_container

TEST_SECRET = "test-secret"

SAGE_REPLY = '{"insight": "You never miss a Monday run.", "suggested_habit": "Five minutes of stretching"}'


@pytest.fixture
def sage_client():
    client = AsyncMock()
    client.complete.return_value = SAGE_REPLY
    return client


@pytest.fixture
async def container(monkeypatch, sage_client):
    monkeypatch.setattr(config, "AUTH_JWT_SECRET", TEST_SECRET)
    monkeypatch.setattr(config, "AUTH_JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(config, "AUTH_JWT_AUDIENCE", "")
    monkeypatch.setattr(limiter, "enabled", False)

    container = init_container(InMemoryDocumentStore(), insight_client=sage_client)
    yield container
    await container.close()
    reset_container()


@pytest.fixture
async def client(container):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    """Authorization header for a user id"""
    def _headers(uid: str) -> dict:
        token = jwt.encode({"sub": uid, "email": f"{uid}@example.com"}, TEST_SECRET, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def signup(client, container, auth_headers):
    """Create an account through the API and optionally seed its balance"""
    async def _signup(uid: str, total_xp: int = 0) -> dict:
        response = await client.post(
            "/api/v1/users",
            json={"display_name": uid.capitalize()},
            headers=auth_headers(uid),
        )
        assert response.status_code == 201
        if total_xp:
            await container.store.update("users", uid, {"total_xp": total_xp})
        return response.json()
    return _signup


@pytest.fixture
def add_habit(client, auth_headers):
    async def _add_habit(uid: str, name: str = "Morning run", category: str = "fitness", **extra) -> dict:
        response = await client.post(
            "/api/v1/habits",
            json={"name": name, "category": category, **extra},
            headers=auth_headers(uid),
        )
        assert response.status_code == 201
        return response.json()
    return _add_habit
