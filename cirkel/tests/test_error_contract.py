"""Tests for normalized error responses and request identity."""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from cirkel.core.auth import resolve_user_id, verify_jwt
from cirkel.core.config import settings
from cirkel.core.errors import UnauthorizedError


def make_token(sub="jwt-user", secret=None, expires_in=3600):
    now = datetime.now(timezone.utc)
    payload = {"sub": sub, "iat": now, "exp": now + timedelta(seconds=expires_in)}
    return jwt.encode(payload, secret or settings.AUTH_JWT_SECRET, algorithm="HS256")


def test_missing_identity_has_standard_shape(client):
    resp = client.get("/v1/quota")

    assert resp.status_code == 401
    body = resp.json()
    rid = resp.headers.get("x-request-id")
    assert body["error"]["code"] == "unauthorized"
    assert body["error"]["request_id"] == rid
    assert body["detail"] == body["error"]["message"]


def test_provided_request_id_is_echoed_in_errors(client):
    resp = client.get("/v1/quota", headers={"X-Request-Id": "rid-42"})

    assert resp.headers["x-request-id"] == "rid-42"
    assert resp.json()["error"]["request_id"] == "rid-42"


def test_not_found_has_standard_shape(client):
    resp = client.get("/v1/users/nobody/follow-stats", headers={"X-User-Id": "alice"})

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_bearer_token_identifies_the_caller(client):
    resp = client.get("/v1/quota", headers={"Authorization": f"Bearer {make_token('jwt-user')}"})

    assert resp.status_code == 200
    assert resp.json()["userId"] == "jwt-user"


def test_bearer_token_wins_over_header():
    token = make_token("from-token")
    assert resolve_user_id(f"Bearer {token}", "from-header") == "from-token"


def test_bad_signature_is_unauthorized(client):
    token = make_token(secret="some-other-secret-0123456789abcdef0123")
    resp = client.get("/v1/quota", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401


def test_expired_token_is_unauthorized():
    with pytest.raises(UnauthorizedError, match="expired"):
        verify_jwt(make_token(expires_in=-60))


def test_no_secret_skips_jwt_validation(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", None)

    assert verify_jwt("not-even-a-jwt") is None
    assert resolve_user_id("Bearer not-even-a-jwt", "fallback") == "fallback"
