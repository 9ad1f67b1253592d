"""Shared fixtures for route tests.

Each test gets its own SQLite database, created through the app lifespan.
"""

import pytest
from fastapi.testclient import TestClient

from visidash.server.config import get_settings
from visidash.server.main import app

ENV_VARS = [
    "AI_PROVIDER_URL",
    "AI_PROVIDER_API_KEY",
    "N8N_WEBHOOK_URL",
    "N8N_WEBHOOK_USERNAME",
    "N8N_WEBHOOK_PASSWORD",
    "N8N_WEBHOOK_TIMEOUT_SECONDS",
]

ADMIN_PASSWORD = "admin-pass"
MEMBER_PASSWORD = "member-pass"


@pytest.fixture
def client(tmp_path, monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'visidash.db'}")
    get_settings.cache_clear()

    with TestClient(app) as test_client:
        yield test_client

    get_settings.cache_clear()


def register(client, email, password, name="Test User", invitation_code=None):
    body = {"email": email, "password": password, "name": name}
    if invitation_code is not None:
        body["invitationCode"] = invitation_code
    return client.post("/api/auth/register", json=body)


def new_invitation_code(client, expires_in_days=7):
    response = client.post(
        "/api/admin/invitation-codes", json={"expiresInDays": expires_in_days}
    )
    assert response.status_code == 200
    return response.json()["code"]


@pytest.fixture
def admin(client):
    """The first registered user, who is an admin."""
    response = register(client, "admin@example.com", ADMIN_PASSWORD, name="Admin")
    assert response.status_code == 200
    return response.json()["user"]


@pytest.fixture
def member(client, admin):
    """A regular user who signed up with an invitation code."""
    code = new_invitation_code(client)
    response = register(
        client, "member@example.com", MEMBER_PASSWORD, name="Member", invitation_code=code
    )
    assert response.status_code == 200
    return response.json()["user"]


def update_settings(client, user_id, **fields):
    response = client.put("/api/settings", json={"userId": user_id, **fields})
    assert response.status_code == 200, response.text
    return response.json()
