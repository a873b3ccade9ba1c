"""
Shared fixtures for the Honua API test suite.

Every test runs against a fresh SQLite file in ``tmp_path``; requests go
through ``httpx.AsyncClient`` bound to the ASGI app, so no server is
started.  The first account registered in a test becomes the super
administrator, which the ``admin`` fixture relies on.
"""

from typing import Any, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from honua_api.app.core.config import settings
from honua_api.app.core.db import init_db
from honua_api.app.main import app

API = "/api/v1"


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    """Point the application at an empty, migrated database."""
    monkeypatch.setattr(settings, "database_url", str(tmp_path / "honua-test.db"))
    monkeypatch.setattr(settings, "stripe_secret_key", "")
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
    init_db()
    yield


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def register_user(client: AsyncClient, username: str, **extra: Any) -> Dict[str, Any]:
    """Register and log in ``username``; return its id, username and auth headers."""
    payload = {
        "email": f"{username}@example.com",
        "username": username,
        "full_name": username.capitalize(),
        "password": "secret123",
    }
    payload.update(extra)
    response = await client.post(f"{API}/users/register", json=payload)
    assert response.status_code == 201, response.text
    body = response.json()
    login = await client.post(f"{API}/users/login", json={"email": payload["email"], "password": "secret123"})
    assert login.status_code == 200, login.text
    token = login.json()["access_token"]
    return {
        "id": body["user"]["id"],
        "username": username,
        "headers": {"Authorization": f"Bearer {token}"},
        "registration": body,
    }


@pytest_asyncio.fixture
async def admin(client):
    return await register_user(client, "kaiadmin")


@pytest_asyncio.fixture
async def alice(client, admin):
    return await register_user(client, "alice")


@pytest_asyncio.fixture
async def bob(client, admin):
    return await register_user(client, "bob")


async def grant_points(client: AsyncClient, admin: Dict[str, Any], user_id: int, points: int) -> None:
    """Credit ``points`` to a user through the admin transaction endpoint."""
    response = await client.post(
        f"{API}/green-points/transactions",
        json={"action_type": "task_completed", "points": points, "target_user_id": user_id},
        headers=admin["headers"],
    )
    assert response.status_code == 201, response.text
