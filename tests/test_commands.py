from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from timesheet.commands import Commands
from timesheet.db import TimesheetDB

TODAY = date(2026, 3, 15)


@pytest.fixture()
def commands(tmp_path: Path):
    db = TimesheetDB(tmp_path / "ts.sqlite3", admin_username="admin", admin_password="Admin@123")
    yield Commands(db, today=lambda: TODAY)
    db.close()


def _operator(commands: Commands, username: str = "op", **kw) -> int:
    res = commands.dispatch("admin:createUser", {"username": username, "password": "secret1", "role": "operator", **kw})
    assert res["success"] is True
    return res["data"]["id"]


def _entry(user_id: int, **kw) -> dict:
    values = {
        "user_id": user_id,
        "date": "2026-03-10",
        "task": "build",
        "start_time": "09:00",
        "end_time": "17:00",
        "break_minutes": 30,
        "billable": 1,
        "rate_per_hour": 500,
    }
    values.update(kw)
    return values


def test_login_flow(commands: Commands) -> None:
    assert commands.dispatch("auth:login", {"username": "ghost", "password": "x"}) == {
        "success": False,
        "message": "User not found",
    }
    bad = commands.dispatch("auth:login", {"username": "admin", "password": "nope"})
    assert bad["message"] == "Incorrect password"

    res = commands.dispatch("auth:login", {"username": "admin", "password": "Admin@123"})
    assert res["success"] is True
    assert res["data"]["role"] == "admin"
    assert "password_hash" not in res["data"]


def test_deactivated_operator_cannot_login_but_admin_can(commands: Commands) -> None:
    op_id = _operator(commands)
    commands.dispatch("admin:editUser", {"userId": op_id, "active": 0})
    res = commands.dispatch("auth:login", {"username": "op", "password": "secret1"})
    assert res == {"success": False, "message": "User is deactivated"}

    admin = commands.db.get_user_by_name("admin")
    commands.dispatch("admin:editUser", {"userId": admin.id, "active": False})
    assert commands.dispatch("auth:login", {"username": "admin", "password": "Admin@123"})["success"] is True


def test_create_user_validation(commands: Commands) -> None:
    assert commands.dispatch("admin:createUser", {"username": "x", "password": ""})["message"] == "Provide username & password"
    assert commands.dispatch("admin:createUser", {"username": "x", "password": "secret1", "role": "boss"})["success"] is False
    _operator(commands, "dup")
    dup = commands.dispatch("admin:createUser", {"username": "dup", "password": "secret1"})
    assert dup["success"] is False
    assert "UNIQUE" in dup["message"]


def test_change_and_reset_password(commands: Commands) -> None:
    op_id = _operator(commands)
    wrong = commands.dispatch("user:changePassword", {"userId": op_id, "oldPassword": "bad", "newPassword": "new-pass"})
    assert wrong["message"] == "Old password incorrect"
    assert commands.dispatch("user:changePassword", {"userId": op_id, "oldPassword": "secret1", "newPassword": "new-pass"})["success"]
    assert commands.dispatch("auth:login", {"username": "op", "password": "new-pass"})["success"]

    assert commands.dispatch("admin:resetPassword", {"userId": op_id, "newPassword": "reset-1"})["success"]
    assert commands.dispatch("auth:login", {"username": "op", "password": "reset-1"})["success"]
    assert commands.dispatch("admin:resetPassword", {"userId": 999, "newPassword": "reset-1"})["message"] == "User not found"


def test_companies(commands: Commands) -> None:
    assert commands.dispatch("company:create", {"name": "  "})["success"] is False
    commands.dispatch("company:create", {"name": "Zeta"})
    commands.dispatch("company:create", {"name": "Acme"})
    names = [c["company_name"] for c in commands.dispatch("company:list")["data"]]
    assert names == ["Acme", "Zeta"]


def test_add_timesheet_computes_amount(commands: Commands) -> None:
    op_id = _operator(commands)
    res = commands.dispatch("timesheet:add", _entry(op_id))
    assert res["success"] is True
    assert res["data"]["billable_amount"] == 3750.0

    rows = commands.dispatch("timesheet:getByUser", op_id)["data"]
    assert len(rows) == 1
    assert rows[0]["billable_amount"] == 3750.0
    assert rows[0]["billable"] is True
    assert rows[0]["status"] == "pending"


def test_add_timesheet_rejects_invalid_range(commands: Commands) -> None:
    op_id = _operator(commands)
    res = commands.dispatch("timesheet:add", _entry(op_id, start_time="10:00", end_time="09:00"))
    assert res == {"success": False, "message": "Invalid time range"}
    assert commands.dispatch("timesheet:getAll")["data"] == []


def test_update_recomputes_or_leaves_row_untouched(commands: Commands) -> None:
    op_id = _operator(commands)
    ts_id = commands.dispatch("timesheet:add", _entry(op_id))["data"]["id"]

    bad = commands.dispatch("timesheet:update", {"id": ts_id, "start_time": "09:00", "end_time": "09:20", "break_minutes": 30})
    assert bad == {"success": False, "message": "Invalid time range"}
    assert commands.db.get_timesheet(ts_id).billable_amount == 3750.0

    good = commands.dispatch("timesheet:update", {"id": ts_id, "end_time": "13:00", "rate_per_hour": 100})
    assert good["success"] is True
    row = commands.db.get_timesheet(ts_id)
    assert row.end_time == "13:00"
    assert row.billable_amount == 350.0
    assert row.task == "build"

    assert commands.dispatch("timesheet:update", {"id": 999})["message"] == "Timesheet not found"


def test_approve_and_comments(commands: Commands) -> None:
    op_id = _operator(commands)
    admin = commands.db.get_user_by_name("admin")
    ts_id = commands.dispatch("timesheet:add", _entry(op_id))["data"]["id"]

    res = commands.dispatch("timesheet:approve", {"id": ts_id, "action": "approve", "adminId": admin.id, "note": "  "})
    assert res["data"]["status"] == "approved"
    assert commands.dispatch("comment:getByTimesheet", ts_id)["data"] == []

    res = commands.dispatch("timesheet:approve", {"id": ts_id, "action": "reject", "adminId": admin.id, "note": " redo "})
    assert res["data"]["status"] == "rejected"

    commands.dispatch("comment:add", {"timesheet_id": ts_id, "user_id": op_id, "commenter_role": "operator", "comment": "done"})
    comments = commands.dispatch("comment:getByTimesheet", ts_id)["data"]
    assert [(c["commenter_role"], c["comment"]) for c in comments] == [("admin", "redo"), ("operator", "done")]
    assert commands.dispatch("comment:add", {"timesheet_id": ts_id, "comment": ""})["success"] is False


def test_delete_user_and_timesheet(commands: Commands) -> None:
    op_id = _operator(commands)
    first = commands.dispatch("timesheet:add", _entry(op_id))["data"]["id"]
    commands.dispatch("timesheet:add", _entry(op_id, date="2026-03-11"))

    assert commands.dispatch("timesheet:delete", {"id": first})["success"]
    assert commands.dispatch("timesheet:delete", {"id": first})["success"] is False
    assert commands.dispatch("admin:deleteUser", {"userId": op_id})["success"]
    assert commands.dispatch("timesheet:getAll")["data"] == []


def test_report_totals(commands: Commands) -> None:
    a = _operator(commands, "alice")
    b = _operator(commands, "bob")
    commands.dispatch("admin:editUser", {"userId": b, "active": 0})
    commands.dispatch("company:create", {"name": "Acme"})
    commands.dispatch("timesheet:add", _entry(a, date="2026-03-02"))
    commands.dispatch("timesheet:add", _entry(b, date="2026-02-20", end_time="12:00", break_minutes=0, rate_per_hour=100))
    commands.dispatch("timesheet:add", _entry(b, date="2026-01-05", end_time="18:00", break_minutes=0, rate_per_hour=10))

    totals = commands.dispatch("report:totals")["data"]
    assert totals == {
        "totalUsers": 3,
        "totalCompanies": 1,
        "totalEntries": 3,
        "totalHoursThisMonth": 7.5,
        "billableAmount": 4140.0,
        "topUser": "bob",
    }


def test_report_dashboard_and_calendar(commands: Commands) -> None:
    op_id = _operator(commands)
    commands.dispatch("timesheet:add", _entry(op_id, date="2026-03-02"))
    commands.dispatch("timesheet:add", _entry(op_id, date="2026-03-02", billable=0))

    dash = commands.dispatch("report:dashboard")["data"]
    assert dash["hoursPerUser"] == {"op": 15.0}
    assert dash["billable"] == {"billable": 1, "nonBillable": 1}
    assert [p["total_hours"] for p in dash["monthlyTrend"]][-1] == 15.0

    cal = commands.dispatch("report:calendar", {"year": 2026, "month": 3})["data"]
    assert cal["label"] == "March 2026"
    assert cal["days"][1]["entryCount"] == 2
    assert cal["days"][14]["isToday"] is True
    assert commands.dispatch("report:calendar", {"month": 13})["success"] is False


def test_empty_reports(commands: Commands) -> None:
    totals = commands.dispatch("report:totals")["data"]
    assert totals["totalHoursThisMonth"] == 0
    assert totals["billableAmount"] == 0
    assert totals["topUser"] is None
    dash = commands.dispatch("report:dashboard")["data"]
    assert dash["hoursPerUser"] == {}
    assert len(dash["monthlyTrend"]) == 6


def test_unknown_channel_and_bad_payload(commands: Commands) -> None:
    assert commands.dispatch("nope:nothing") == {"success": False, "message": "Unknown channel: nope:nothing"}
    assert commands.dispatch("timesheet:delete", {"id": "abc"})["success"] is False
    assert commands.dispatch("timesheet:add", "not a dict")["success"] is False


def test_huge_rate_is_rejected_not_raised(commands: Commands) -> None:
    op_id = _operator(commands)
    res = commands.dispatch("timesheet:add", _entry(op_id, start_time="09:00", end_time="10:00", rate_per_hour=1e30))
    assert res == {"success": False, "message": "Rate out of range"}
    assert commands.dispatch("timesheet:getAll")["data"] == []


def test_calendar_rejects_zero_month_and_year(commands: Commands) -> None:
    assert commands.dispatch("report:calendar", {"year": 2026, "month": 0})["success"] is False
    assert commands.dispatch("report:calendar", {"year": 0, "month": 3})["success"] is False
    cal = commands.dispatch("report:calendar", {})["data"]
    assert (cal["year"], cal["month"]) == (2026, 3)


def test_passwords_are_kept_as_typed(commands: Commands) -> None:
    res = commands.dispatch("admin:createUser", {"username": "spacey", "password": " abc1 "})
    user_id = res["data"]["id"]
    assert commands.dispatch("auth:login", {"username": "spacey", "password": " abc1 "})["success"] is True
    assert commands.dispatch("auth:login", {"username": "spacey", "password": "abc1"})["success"] is False

    commands.dispatch("admin:resetPassword", {"userId": user_id, "newPassword": " pw12 "})
    assert commands.dispatch("auth:login", {"username": "spacey", "password": " pw12 "})["success"] is True
