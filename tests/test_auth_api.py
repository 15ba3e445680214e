from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from conftest import PASSWORD, SECRET, bearer, signup
from synapse_backend.api.server import create_app
from synapse_backend.auth.security import TokenService
from synapse_backend.db import connect
from synapse_backend.ratelimit import RateLimiter


def _user_count(cfg) -> int:
    with connect(cfg.DB_DSN) as conn:
        return int(conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"])


def test_health_is_enveloped(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"success": True, "data": {"status": "ok"}}


def test_signup_returns_user_and_token(client):
    r = client.post(
        "/api/auth/signup",
        json={
            "full_name": "  Grace   Hopper ",
            "email": "  Grace@Uni.EDU ",
            "password": PASSWORD,
            "department": "Mathematics",
            "academic_year": "2nd Year",
        },
    )
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    user = body["data"]["user"]
    assert user["email"] == "grace@uni.edu"
    assert user["full_name"] == "Grace Hopper"
    assert user["is_hoc"] is False
    assert user["notifications_enabled"] is True
    assert "password_hash" not in user
    assert body["data"]["token_type"] == "bearer"
    assert body["data"]["expires_in"] == 60 * 60

    claims = TokenService(SECRET).verify(body["data"]["token"])
    assert claims["user_id"] == user["user_id"]


def test_signup_then_login_token_identifies_user(client):
    _, user = signup(client, "ada@uni.edu")
    r = client.post("/api/auth/login", json={"email": "ADA@uni.edu", "password": PASSWORD})
    assert r.status_code == 200
    token = r.json()["data"]["token"]
    assert TokenService(SECRET).verify(token)["user_id"] == user["user_id"]

    me = client.get("/api/auth/me", headers=bearer(token))
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == "ada@uni.edu"
    assert me.json()["data"]["user"]["last_login_at"]


def test_duplicate_email_is_case_insensitive_and_inserts_nothing(client, cfg):
    signup(client, "Alice@Uni.edu")
    assert _user_count(cfg) == 1

    r = client.post(
        "/api/auth/signup",
        json={
            "full_name": "Other Alice",
            "email": "alice@uni.edu ",
            "password": PASSWORD,
            "department": "Physics",
            "academic_year": "1st Year",
        },
    )
    assert r.status_code == 409
    assert r.json() == {"success": False, "error": "email_already_registered"}
    assert _user_count(cfg) == 1


def test_signup_validation_errors(client, cfg):
    base = {
        "full_name": "Test",
        "email": "t@uni.edu",
        "password": PASSWORD,
        "department": "CS",
        "academic_year": "1st Year",
    }

    r = client.post("/api/auth/signup", json={**base, "email": "not-an-email"})
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_email"

    r = client.post("/api/auth/signup", json={**base, "password": "short"})
    assert r.status_code == 400
    assert r.json()["error"] == "password_too_short"

    r = client.post("/api/auth/signup", json={**base, "department": "   "})
    assert r.status_code == 400
    assert r.json()["error"] == "department_required"

    missing = dict(base)
    missing.pop("academic_year")
    r = client.post("/api/auth/signup", json=missing)
    assert r.status_code == 400
    assert r.json()["success"] is False
    assert r.json()["error"].startswith("academic_year")

    assert _user_count(cfg) == 0


def test_login_failures_are_indistinguishable(client):
    signup(client, "bob@uni.edu")

    wrong_password = client.post("/api/auth/login", json={"email": "bob@uni.edu", "password": "wrong-password"})
    unknown_email = client.post("/api/auth/login", json={"email": "nobody@uni.edu", "password": PASSWORD})

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"success": False, "error": "invalid_credentials"}


def test_login_requires_both_fields(client):
    r = client.post("/api/auth/login", json={"email": "  ", "password": ""})
    assert r.status_code == 400
    assert r.json()["error"] == "email_and_password_required"


def test_missing_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json() == {"success": False, "error": "missing_token"}
    assert r.headers["www-authenticate"] == "Bearer"


def test_bad_tokens_get_one_uniform_error(client):
    _, user = signup(client, "carol@uni.edu")
    uid = user["user_id"]

    wrong_secret = TokenService("not-the-secret").issue(uid)
    issued_at = datetime.now(timezone.utc) - timedelta(days=3)
    expired = TokenService(SECRET, expires_minutes=60, clock=lambda: issued_at).issue(uid)
    unknown_user = TokenService(SECRET).issue(999999)

    bodies = []
    for token in (wrong_secret, expired, unknown_user, "garbage.token.value"):
        r = client.get("/api/auth/me", headers=bearer(token))
        assert r.status_code == 401
        bodies.append(r.json())
    assert all(b == {"success": False, "error": "invalid_or_expired_token"} for b in bodies)


def test_update_profile(client):
    token, _ = signup(client, "dave@uni.edu")
    r = client.put("/api/auth/profile", json={"department": "  Electrical  Engineering "}, headers=bearer(token))
    assert r.status_code == 200
    user = r.json()["data"]["user"]
    assert user["department"] == "Electrical Engineering"
    assert user["full_name"] == "Test Student"

    r = client.put("/api/auth/profile", json={}, headers=bearer(token))
    assert r.status_code == 400
    assert r.json()["error"] == "no_fields_to_update"

    r = client.put("/api/auth/profile", json={"full_name": " "}, headers=bearer(token))
    assert r.status_code == 400
    assert r.json()["error"] == "full_name_blank"


def test_notification_preference_is_recorded(client):
    token, _ = signup(client, "erin@uni.edu")
    r = client.put("/api/auth/notification-preference", json={"enabled": False}, headers=bearer(token))
    assert r.status_code == 200
    assert r.json()["data"]["user"]["notifications_enabled"] is False

    titles = [n["title"] for n in client.get("/api/notifications", headers=bearer(token)).json()["data"]]
    assert "Notifications Disabled" in titles


def test_force_enable_hoc_is_off_by_default(client):
    token, _ = signup(client, "frank@uni.edu")
    r = client.post("/api/auth/force-enable-hoc", headers=bearer(token))
    assert r.status_code == 404
    assert client.get("/api/auth/me", headers=bearer(token)).json()["data"]["user"]["is_hoc"] is False


def test_force_enable_hoc_when_allowed(cfg, push):
    app = create_app(replace(cfg, AUTH_ALLOW_FORCE_HOC=True), push_client=push)
    with TestClient(app) as client:
        token, _ = signup(client, "gina@uni.edu")
        assert client.get("/api/hoc/classes", headers=bearer(token)).status_code == 403

        r = client.post("/api/auth/force-enable-hoc", headers=bearer(token))
        assert r.status_code == 200
        assert r.json()["data"]["user"]["is_hoc"] is True
        assert client.get("/api/hoc/classes", headers=bearer(token)).status_code == 200


def test_login_is_rate_limited(cfg, push):
    now = [1000.0]
    limiter = RateLimiter(2, 60, clock=lambda: now[0])
    app = create_app(cfg, push_client=push, auth_limiter=limiter)
    with TestClient(app) as client:
        creds = {"email": "nobody@uni.edu", "password": PASSWORD}
        assert client.post("/api/auth/login", json=creds).status_code == 401
        assert client.post("/api/auth/login", json=creds).status_code == 401

        r = client.post("/api/auth/login", json=creds)
        assert r.status_code == 429
        assert r.json() == {"success": False, "error": "too_many_requests"}
        assert r.headers["retry-after"] == "60"

        now[0] += 61
        assert client.post("/api/auth/login", json=creds).status_code == 401


def test_unknown_route_is_enveloped(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "resource_not_found: /api/does-not-exist"}
