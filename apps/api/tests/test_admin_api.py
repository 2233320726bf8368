from fastapi.testclient import TestClient

from main import app
from conftest import auth_headers, make_admin, make_member
from core.database import SessionLocal
from models import AdminAuditEvent, Gym, Member
from services import token_ledger
from services.email_service import email_service


client = TestClient(app)


def _audit_actions():
    with SessionLocal() as s:
        return [e.action for e in s.query(AdminAuditEvent).order_by(AdminAuditEvent.created_at).all()]


def test_dashboard_and_reports(admin_headers, member, gym):
    with SessionLocal() as s:
        token_ledger.purchase(s, member.id, "monthly")
    client.post("/v1/member/check-in", json={"gym_id": "FZ001"}, headers=auth_headers(member))

    dash = client.get("/v1/admin/dashboard", headers=admin_headers).json()["data"]
    assert dash["stats"]["total_members"] == 1
    assert dash["stats"]["total_gyms"] == 1
    assert dash["stats"]["total_visits"] == 1
    assert dash["stats"]["total_revenue"] == 99.99

    report = client.get("/v1/admin/reports?period=monthly", headers=admin_headers).json()["data"]
    assert report["totals"]["visits"] == 1
    assert report["revenue_by_plan"][0]["plan"] == "monthly"


def test_list_members_with_search(admin_headers):
    make_member(email="jordan@example.com", name="Jordan Smith")
    make_member(email="riley@example.com", name="Riley Chen")

    data = client.get("/v1/admin/members?search=jordan", headers=admin_headers).json()["data"]

    assert [m["email"] for m in data["members"]] == ["jordan@example.com"]
    assert data["pagination"]["total"] == 1


def test_list_gyms_with_search(admin_headers, gym, other_gym):
    data = client.get("/v1/admin/gyms?search=PH0", headers=admin_headers).json()["data"]
    assert [g["gym_code"] for g in data["gyms"]] == ["PH002"]


def test_create_gym_mails_credentials(admin_headers, monkeypatch):
    sent = []
    monkeypatch.setattr(
        email_service,
        "send_gym_credentials",
        lambda email, name, password: sent.append((email, name, password)) or True,
    )

    resp = client.post(
        "/v1/admin/gyms",
        json={
            "name": "Elite Fitness",
            "email": "elite@example.com",
            "location": {"address": "9 Pier Rd", "city": "Seaside", "state": "CA", "zip_code": "90001"},
            "capacity": 80,
            "gym_code": "ef003",
        },
        headers=admin_headers,
    )

    assert resp.status_code == 201
    gym = resp.json()["data"]["gym"]
    assert gym["gym_code"] == "EF003"
    assert "password" not in resp.text
    assert sent and sent[0][0] == "elite@example.com"
    assert _audit_actions() == ["gym.create"]


def test_create_gym_requires_capacity(admin_headers):
    resp = client.post(
        "/v1/admin/gyms",
        json={
            "name": "No Capacity",
            "email": "nocap@example.com",
            "location": {"address": "1 St", "city": "X", "state": "Y", "zip_code": "1"},
        },
        headers=admin_headers,
    )
    assert resp.status_code == 422


def test_update_member_rejects_balance_edits(admin_headers, member):
    resp = client.put(f"/v1/admin/members/{member.id}", json={"tokens": 500}, headers=admin_headers)
    assert resp.status_code == 422

    resp = client.put(f"/v1/admin/members/{member.id}", json={"name": "Renamed"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["member"]["name"] == "Renamed"
    assert resp.json()["data"]["member"]["tokens"] == 0
    assert _audit_actions() == ["member.update"]


def test_update_gym(admin_headers, gym):
    resp = client.put(f"/v1/admin/gyms/{gym.id}", json={"capacity": 120}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["gym"]["capacity"] == 120


def test_deactivated_member_cannot_check_in(admin_headers, funded_member, funded_headers, gym):
    resp = client.patch(
        f"/v1/admin/users/{funded_member.id}/deactivate",
        json={"reason": "chargeback"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["is_active"] is False

    resp = client.post("/v1/member/check-in", json={"gym_id": "FZ001"}, headers=funded_headers)
    assert resp.status_code == 403
    assert resp.json()["error_code"] == "FORBIDDEN"

    resp = client.patch(f"/v1/admin/users/{funded_member.id}/reactivate", headers=admin_headers)
    assert resp.status_code == 200
    resp = client.post("/v1/member/check-in", json={"gym_id": "FZ001"}, headers=funded_headers)
    assert resp.status_code == 200
    assert sorted(_audit_actions()) == ["user.deactivate", "user.reactivate"]


def test_admin_cannot_deactivate_self(admin, admin_headers):
    resp = client.patch(f"/v1/admin/users/{admin.id}/deactivate", headers=admin_headers)
    assert resp.status_code == 422


def test_token_adjustment(admin_headers, funded_member):
    resp = client.post(
        f"/v1/admin/members/{funded_member.id}/tokens/adjust",
        json={"delta": -2, "reason": "duplicate credit"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["new_balance"] == 3
    assert resp.json()["data"]["transaction"]["type"] == "adjustment"

    resp = client.post(
        f"/v1/admin/members/{funded_member.id}/tokens/adjust",
        json={"delta": -10, "reason": "too much"},
        headers=admin_headers,
    )
    assert resp.status_code == 400
    with SessionLocal() as s:
        assert s.get(Member, funded_member.id).tokens == 3


def test_refund_and_double_refund(admin_headers, member):
    with SessionLocal() as s:
        txn_id = token_ledger.purchase(s, member.id, "weekly").transaction.transaction_id

    resp = client.post(f"/v1/admin/transactions/{txn_id}/refund", json={"reason": "requested"}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["new_balance"] == 0
    assert resp.json()["data"]["transaction"]["type"] == "refund"

    again = client.post(f"/v1/admin/transactions/{txn_id}/refund", headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["error_code"] == "CONFLICT"


def test_member_ledger_reconciles(admin_headers, member, gym):
    with SessionLocal() as s:
        token_ledger.purchase(s, member.id, "weekly")
    client.post("/v1/member/check-in", json={"gym_id": "FZ001"}, headers=auth_headers(member))

    data = client.get(f"/v1/admin/members/{member.id}/ledger", headers=admin_headers).json()["data"]

    assert data["reconciliation"]["expected"] == 6
    assert data["reconciliation"]["actual"] == 6
    assert data["reconciliation"]["consistent"] is True
    assert len(data["transactions"]) == 1


def test_missing_capability_is_forbidden(gym):
    reporter = make_admin(email="reporter@example.com", permissions=["view_reports"])
    headers = auth_headers(reporter)

    assert client.get("/v1/admin/dashboard", headers=headers).status_code == 200
    members = client.get("/v1/admin/members", headers=headers)
    assert members.status_code == 403
    assert members.json() == {
        "success": False,
        "detail": "Missing permission: manage_users",
        "error_code": "FORBIDDEN",
    }
    update = client.put(f"/v1/admin/gyms/{gym.id}", json={"capacity": 1}, headers=headers)
    assert update.status_code == 403
    assert update.json()["error_code"] == "FORBIDDEN"
    with SessionLocal() as s:
        assert s.get(Gym, gym.id).capacity != 1


def test_non_admin_is_forbidden(member_headers):
    resp = client.get("/v1/admin/dashboard", headers=member_headers)
    assert resp.status_code == 403
    assert resp.json()["error_code"] == "FORBIDDEN"
