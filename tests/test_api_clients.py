# Tests for the client management endpoints.
# Created: 2026-10-18

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from authgate.api.oauth2.server import AuthorizationServer
from authgate.api.oauth2.storage import MemoryOAuthStorage
from authgate.api.v1.clients import router
from authgate.config import Settings, get_settings
from authgate.security.session_tokens import create_session_token

SECRET = "api-test-secret"
REDIRECT = "https://app.test/cb"


@pytest.fixture(autouse=True)
def _env(monkeypatch, tmp_path):
    monkeypatch.setenv("AUTHGATE_SECRET_KEY", SECRET)
    monkeypatch.setenv("AUTHGATE_CONFIG_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def server(monkeypatch):
    import authgate.api.oauth2.server as mod

    srv = AuthorizationServer(
        MemoryOAuthStorage(), settings=Settings(secret_key=SECRET), secret_key=SECRET
    )
    monkeypatch.setattr(mod, "_server", srv)
    return srv


@pytest.fixture
def client(server):
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    return TestClient(app)


def _auth(user_id):
    return {"Authorization": f"Bearer {create_session_token(user_id, secret=SECRET)}"}


def _create(client, user_id="dev-1", **overrides):
    body = {"name": "Calendar", "redirect_uris": [REDIRECT], "scopes": ["openid", "email"]}
    body.update(overrides)
    return client.post("/api/v1/clients", json=body, headers=_auth(user_id))


class TestCreate:
    def test_returns_secret_once(self, client):
        resp = _create(client)
        assert resp.status_code == 201
        data = resp.json()
        assert data["client_id"].startswith("cl_")
        assert data["client_secret"].startswith("cs_")
        assert data["owner_id"] == "dev-1"
        assert data["allowed_scopes"] == ["openid", "email"]

    def test_requires_session(self, client):
        resp = client.post("/api/v1/clients", json={"name": "X", "redirect_uris": [REDIRECT]})
        assert resp.status_code == 401

    def test_rejects_bad_redirect_uri(self, client):
        resp = _create(client, redirect_uris=["https://app.test/cb#frag"])
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_redirect_uri"

    def test_rejects_unknown_scope(self, client):
        resp = _create(client, scopes=["openid", "admin"])
        assert resp.status_code == 400

    def test_default_scopes(self, client):
        resp = _create(client, scopes=None)
        assert resp.json()["allowed_scopes"] == ["openid", "profile", "email"]


class TestRead:
    def test_list_has_no_secrets(self, client):
        _create(client)
        _create(client, name="Notes")
        _create(client, user_id="dev-2", name="Elsewhere")

        resp = client.get("/api/v1/clients", headers=_auth("dev-1"))
        assert resp.status_code == 200
        data = resp.json()
        assert {c["name"] for c in data} == {"Calendar", "Notes"}
        assert all("client_secret" not in c for c in data)

    def test_owner_sees_full_view(self, client):
        created = _create(client).json()
        resp = client.get(f"/api/v1/clients/{created['client_id']}", headers=_auth("dev-1"))
        assert resp.json()["client_secret"] == created["client_secret"]

    def test_others_see_public_view(self, client):
        created = _create(client).json()
        for headers in ({}, _auth("someone-else")):
            resp = client.get(f"/api/v1/clients/{created['client_id']}", headers=headers)
            assert resp.status_code == 200
            assert "client_secret" not in resp.json()
            assert "owner_id" not in resp.json()

    def test_unknown_client(self, client):
        assert client.get("/api/v1/clients/cl_missing").status_code == 404


class TestModify:
    def test_patch_only_supplied_fields(self, client):
        created = _create(client).json()
        resp = client.patch(
            f"/api/v1/clients/{created['client_id']}",
            json={"description": "Shared calendars"},
            headers=_auth("dev-1"),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["description"] == "Shared calendars"
        assert data["name"] == "Calendar"
        assert data["redirect_uris"] == [REDIRECT]

    def test_patch_by_non_owner(self, client):
        created = _create(client).json()
        resp = client.patch(
            f"/api/v1/clients/{created['client_id']}",
            json={"name": "Hijacked"},
            headers=_auth("dev-2"),
        )
        assert resp.status_code == 403

    def test_rotate_secret(self, client, server):
        created = _create(client).json()
        resp = client.post(
            f"/api/v1/clients/{created['client_id']}/rotate-secret", headers=_auth("dev-1")
        )
        assert resp.status_code == 200
        new_secret = resp.json()["client_secret"]
        assert new_secret != created["client_secret"]
        assert server.clients.authenticate(created["client_id"], new_secret)

    def test_deactivate(self, client):
        created = _create(client).json()
        resp = client.post(
            f"/api/v1/clients/{created['client_id']}/deactivate", headers=_auth("dev-1")
        )
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

    def test_delete(self, client):
        created = _create(client).json()
        url = f"/api/v1/clients/{created['client_id']}"
        assert client.delete(url, headers=_auth("dev-2")).status_code == 403

        resp = client.delete(url, headers=_auth("dev-1"))
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "tokens_revoked": 0}
        assert client.get(url).status_code == 404
        assert client.delete(url, headers=_auth("dev-1")).status_code == 404
