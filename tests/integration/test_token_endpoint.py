# tests/integration/test_token_endpoint.py
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from launchkit_backend.app.api.routes import auth_token
from launchkit_backend.app.main import create_app


class _Verifier:
    def __init__(self, claims=None, error=None):
        self.claims = claims
        self.error = error
        self.tokens = []

    def verify(self, token):
        self.tokens.append(token)
        if self.error is not None:
            raise self.error
        return self.claims


@pytest.fixture
def client():
    return TestClient(create_app())


def _patch(monkeypatch, verifier, mint=None):
    monkeypatch.setattr(auth_token, "get_verifier", lambda: verifier)
    monkeypatch.setattr(auth_token, "mint_custom_token", mint or (lambda uid: f"custom-for-{uid}"))


def test_missing_bearer_is_unauthorized(client, monkeypatch):
    verifier = _Verifier(claims={"sub": "auth0|1"})
    _patch(monkeypatch, verifier)

    r = client.post("/api/auth-firebase-token")
    assert r.status_code == 401
    assert r.json() == {"status": "error", "message": "Unauthorized"}
    assert verifier.tokens == []


def test_invalid_token_is_unauthorized(client, monkeypatch):
    _patch(monkeypatch, _Verifier(error=HTTPException(status_code=401, detail="invalid token: exp (expired)")))

    r = client.post("/api/auth-firebase-token", headers={"Authorization": "Bearer stale"})
    assert r.status_code == 401
    # verifier detail stays server side
    assert r.json() == {"status": "error", "message": "Unauthorized"}


def test_custom_token_minted_for_subject(client, monkeypatch):
    verifier = _Verifier(claims={"sub": "google-oauth2|1093"})
    minted = []

    def mint(uid):
        minted.append(uid)
        return "custom-123"

    _patch(monkeypatch, verifier, mint)

    r = client.post("/api/auth-firebase-token", headers={"Authorization": "Bearer good-token"})
    assert r.status_code == 200
    assert r.json() == {"status": "success", "data": "custom-123"}
    assert verifier.tokens == ["good-token"]
    assert minted == ["google-oauth2|1093"]


def test_mint_failure_returns_generic_error(client, monkeypatch, caplog):
    def mint(uid):
        raise RuntimeError("service account missing")

    _patch(monkeypatch, _Verifier(claims={"sub": "auth0|1"}), mint)

    r = client.post("/api/auth-firebase-token", headers={"Authorization": "Bearer good-token"})
    assert r.json() == {"status": "error", "message": auth_token.GENERIC_ERROR}
    assert "service account missing" not in r.text
    assert any("auth-firebase-token error" in rec.getMessage() for rec in caplog.records)


def test_openapi_marks_token_route_with_bearer(client):
    schema = client.get("/openapi.json").json()
    assert "Auth0Bearer" in schema["components"]["securitySchemes"]
    assert schema["paths"]["/api/auth-firebase-token"]["post"]["security"] == [{"Auth0Bearer": []}]
