from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from shield.app.core.utils import utcnow
from shield.app.db import crud
from shield.app.db.async_session import build_session_maker, session_scope
from shield.app.main import create_app

AUTH = {"Authorization": "Bearer admin-secret"}


@pytest.fixture
def client(sqlite_settings):
    with TestClient(create_app(sqlite_settings)) as client:
        yield client


def seed_lapsed_entry(client: TestClient) -> None:
    session_maker = build_session_maker(client.app.state.engine)

    async def _seed():
        now = utcnow()
        async with session_scope(session_maker) as session:
            await crud.add_blacklist_entry(
                session, "192.0.2.50", "old", now - timedelta(days=2), now - timedelta(days=1)
            )
            await crud.add_failed_attempt(
                session, "192.0.2.50", "x@example.com", "pytest", now - timedelta(days=2)
            )

    client.portal.call(_seed)


def test_requires_token(client):
    assert client.get("/admin/security/status").status_code == 401
    assert client.get(
        "/admin/security/status", headers={"Authorization": "Bearer wrong"}
    ).status_code == 401


def test_disabled_without_configured_token(sqlite_settings):
    config = sqlite_settings.model_copy(update={"admin_token": ""})
    with TestClient(create_app(config)) as client:
        response = client.get("/admin/security/status", headers=AUTH)
    assert response.status_code == 404


def test_status(client):
    client.portal.call(client.app.state.heuristics.blacklist, "192.0.2.51", "manual")
    seed_lapsed_entry(client)

    response = client.get("/admin/security/status", headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {
        "blacklisted_ips": 1,
        "recent_failed_attempts": 0,
        "expired_blacklists": 1,
    }


def test_cleanup(client):
    seed_lapsed_entry(client)
    client.post("/api/contact", json={
        "name": "Ada", "email": "ada@example.com", "subject": "Hi", "message": "Hello",
    })

    response = client.post("/admin/security/cleanup", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {
        "expired_blacklists": 1,
        "stale_failed_attempts": 1,
        "rate_limit_keys": 0,
        "expired_rate_limit_keys": 0,
    }

    response = client.post(
        "/admin/security/cleanup", params={"reset_rate_limits": "true"}, headers=AUTH
    )
    assert response.json() == {
        "expired_blacklists": 0,
        "stale_failed_attempts": 0,
        "rate_limit_keys": 1,
        "expired_rate_limit_keys": 0,
    }
