from fastapi.testclient import TestClient

from main import app
from conftest import TEST_PASSWORD, auth_headers, make_member
from core.security import create_access_token


client = TestClient(app)


def test_register_member_returns_token_and_profile():
    resp = client.post(
        "/v1/auth/register-member",
        json={
            "name": "New Member",
            "email": "New@Example.com",
            "password": "supersecret",
            "phone": "555-0101",
            "emergency_contact": {"name": "Kin", "phone": "555-0102"},
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["access_token"]
    user = body["user"]
    assert user["email"] == "new@example.com"
    assert user["role"] == "member"
    assert user["tokens"] == 0
    assert user["subscription"]["is_active"] is False
    assert "password_hash" not in user

    me = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == user["id"]


def test_register_duplicate_email_conflicts(member):
    resp = client.post(
        "/v1/auth/register-member",
        json={"name": "Again", "email": member.email, "password": "supersecret"},
    )
    assert resp.status_code == 409
    assert resp.json() == {
        "success": False,
        "detail": "User with this email already exists",
        "error_code": "CONFLICT",
    }


def test_login_for_each_role(member, gym, admin):
    for user, role in ((member, "member"), (gym, "gym"), (admin, "admin")):
        resp = client.post("/v1/auth/login", json={"email": user.email, "password": TEST_PASSWORD, "role": role})
        assert resp.status_code == 200, role
        assert resp.json()["user"]["role"] == role


def test_login_with_wrong_role_is_rejected(member):
    resp = client.post("/v1/auth/login", json={"email": member.email, "password": TEST_PASSWORD, "role": "admin"})
    assert resp.status_code == 401
    assert resp.json()["error_code"] == "UNAUTHORIZED"


def test_login_lockout_after_repeated_failures(member):
    for _ in range(5):
        resp = client.post("/v1/auth/login", json={"email": member.email, "password": "bad-password", "role": "member"})
        assert resp.status_code == 401

    resp = client.post("/v1/auth/login", json={"email": member.email, "password": TEST_PASSWORD, "role": "member"})
    assert resp.status_code == 429
    assert resp.json()["error_code"] == "ACCOUNT_LOCKED"
    assert "Retry-After" in resp.headers


def test_deactivated_user_token_is_refused():
    m = make_member(email="off@example.com", is_active=False)
    resp = client.get("/v1/auth/me", headers=auth_headers(m))
    assert resp.status_code == 403
    assert resp.json() == {"success": False, "detail": "Account is deactivated", "error_code": "FORBIDDEN"}


def test_missing_and_garbage_tokens():
    missing = client.get("/v1/auth/me")
    assert missing.status_code == 401
    assert missing.json()["error_code"] == "UNAUTHORIZED"
    assert missing.headers["WWW-Authenticate"] == "Bearer"

    garbage = client.get("/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert garbage.status_code == 401
    assert garbage.json()["error_code"] == "UNAUTHORIZED"


def test_check_in_and_purchase_require_a_token(gym):
    for path, body in (
        ("/v1/member/check-in", {"gym_id": "FZ001"}),
        ("/v1/member/purchase-subscription", {"plan_id": "weekly"}),
    ):
        resp = client.post(path, json=body)
        assert resp.status_code == 401, path
        assert resp.json()["success"] is False
        assert resp.json()["error_code"] == "UNAUTHORIZED"


def test_token_with_stale_role_is_refused(member):
    token = create_access_token({"sub": str(member.id), "role": "admin"})
    resp = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["error_code"] == "UNAUTHORIZED"


def test_change_password_flow(gym, gym_headers):
    resp = client.post(
        "/v1/auth/change-password",
        json={"current_password": TEST_PASSWORD, "new_password": "a-better-password"},
        headers=gym_headers,
    )
    assert resp.status_code == 200

    resp = client.post("/v1/auth/login", json={"email": gym.email, "password": "a-better-password", "role": "gym"})
    assert resp.status_code == 200


def test_role_guard_on_member_routes(gym_headers):
    resp = client.get("/v1/member/dashboard", headers=gym_headers)
    assert resp.status_code == 403
    assert resp.json()["error_code"] == "FORBIDDEN"


def test_security_headers_present():
    resp = client.get("/ping")
    assert resp.status_code == 200
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert "X-Process-Time" in resp.headers
