from __future__ import annotations

import importlib

import pytest
from fastapi.testclient import TestClient


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.delenv("TIMESHEET_CONFIG", raising=False)
    monkeypatch.delenv("TIMESHEET_ADMIN_USER", raising=False)
    monkeypatch.delenv("TIMESHEET_ADMIN_PASSWORD", raising=False)
    monkeypatch.setenv("TIMESHEET_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TIMESHEET_SECRET_KEY", "test-secret-key-32-chars-aaaaaaaa")
    monkeypatch.setenv("TIMESHEET_HTTPS_ONLY", "0")
    monkeypatch.setenv("TIMESHEET_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver")
    mod = importlib.import_module("timesheet.app")
    mod = importlib.reload(mod)
    yield mod.app
    mod.DB.close()


def _login(client: TestClient, username: str, password: str) -> dict:
    res = client.post("/api/login", json={"username": username, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["data"]


def test_health_and_auth(app) -> None:
    client = TestClient(app)

    r = client.get("/health")
    assert r.status_code == 200
    assert r.text == "ok"
    assert r.headers["X-Frame-Options"] == "DENY"

    denied = client.get("/api/me")
    assert denied.status_code == 401
    assert denied.json() == {"success": False, "message": "authentication required"}

    bad = client.post("/api/login", json={"username": "admin", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json()["message"] == "Incorrect password"

    user = _login(client, "admin", "Admin@123")
    assert user["role"] == "admin"
    assert client.get("/api/me").json()["data"]["username"] == "admin"

    client.post("/api/logout")
    assert client.get("/api/me").status_code == 401


def test_untrusted_host_is_rejected(app) -> None:
    client = TestClient(app, base_url="http://evil.example")
    assert client.get("/health").status_code == 400


def test_operator_and_admin_flow(app) -> None:
    admin = TestClient(app)
    _login(admin, "admin", "Admin@123")

    company = admin.post("/api/companies", json={"name": "Acme"})
    assert company.status_code == 200
    company_id = company.json()["data"]["id"]

    created = admin.post(
        "/api/users",
        json={"username": "op", "password": "secret1", "role": "operator", "company_id": company_id},
    )
    assert created.status_code == 200
    users = admin.get("/api/users").json()["data"]
    assert [u["username"] for u in users] == ["op", "admin"]
    assert users[0]["company_name"] == "Acme"

    op = TestClient(app)
    _login(op, "op", "secret1")
    assert op.get("/api/users").status_code == 403
    assert op.get("/api/reports/totals").status_code == 403

    bad = op.post(
        "/api/my/timesheets",
        json={"date": "2026-03-10", "task": "x", "start_time": "17:00", "end_time": "09:00"},
    )
    assert bad.status_code == 400
    assert bad.json()["message"] == "Invalid time range"

    added = op.post(
        "/api/my/timesheets",
        json={
            "date": "2026-03-10",
            "task": "build",
            "start_time": "09:00",
            "end_time": "17:00",
            "break_minutes": 30,
            "billable": True,
            "rate_per_hour": 500,
            "company_id": company_id,
            "status": "approved",
        },
    )
    assert added.status_code == 200
    ts_id = added.json()["data"]["id"]
    assert added.json()["data"]["billable_amount"] == 3750.0

    mine = op.get("/api/my/timesheets").json()["data"]
    assert len(mine) == 1
    assert mine[0]["status"] == "pending"
    assert mine[0]["company_name"] == "Acme"

    edited = op.put(f"/api/timesheets/{ts_id}", json={"task": "build v2"})
    assert edited.status_code == 200

    approved = admin.post(f"/api/timesheets/{ts_id}/approve", json={"action": "approve", "note": "looks good"})
    assert approved.json()["data"]["status"] == "approved"

    locked = op.put(f"/api/timesheets/{ts_id}", json={"task": "sneaky"})
    assert locked.status_code == 403
    assert op.delete(f"/api/timesheets/{ts_id}").status_code == 403

    op.post(f"/api/timesheets/{ts_id}/comments", json={"comment": "thanks"})
    comments = op.get(f"/api/timesheets/{ts_id}/comments").json()["data"]
    assert [(c["commenter_role"], c["comment"]) for c in comments] == [("admin", "looks good"), ("operator", "thanks")]

    totals = admin.get("/api/reports/totals").json()["data"]
    assert totals["totalUsers"] == 2
    assert totals["totalCompanies"] == 1
    assert totals["totalEntries"] == 1
    assert totals["billableAmount"] == 3750.0
    assert totals["topUser"] == "op"

    dash = admin.get("/api/reports/dashboard").json()["data"]
    assert dash["hoursPerUser"] == {"op": 7.5}
    assert dash["billable"] == {"billable": 1, "nonBillable": 0}

    cal = admin.get("/api/calendar", params={"year": 2026, "month": 3}).json()["data"]
    assert cal["label"] == "March 2026"
    assert cal["leadingBlanks"] == 0
    assert cal["days"][9]["entryCount"] == 1


def test_deactivated_operator_session_is_dropped(app) -> None:
    admin = TestClient(app)
    _login(admin, "admin", "Admin@123")
    op_id = admin.post("/api/users", json={"username": "op", "password": "secret1"}).json()["data"]["id"]

    op = TestClient(app)
    _login(op, "op", "secret1")
    assert op.get("/api/me").status_code == 200

    admin.put(f"/api/users/{op_id}", json={"active": False})
    assert op.get("/api/me").status_code == 401
    denied = op.post("/api/login", json={"username": "op", "password": "secret1"})
    assert denied.status_code == 401
    assert denied.json()["message"] == "User is deactivated"


def test_change_own_password_logs_out(app) -> None:
    client = TestClient(app)
    _login(client, "admin", "Admin@123")
    res = client.post("/api/me/password", json={"oldPassword": "Admin@123", "newPassword": "Better#456"})
    assert res.status_code == 200
    assert client.get("/api/me").status_code == 401
    _login(client, "admin", "Better#456")


def test_mutating_routes_require_json(app) -> None:
    client = TestClient(app)
    _login(client, "admin", "Admin@123")
    form = client.post("/api/companies", data={"name": "Acme"})
    assert form.status_code == 415
    assert form.json()["success"] is False
    assert client.get("/api/companies").json()["data"] == []

    login_form = TestClient(app).post("/api/login", data={"username": "admin", "password": "Admin@123"})
    assert login_form.status_code == 415
