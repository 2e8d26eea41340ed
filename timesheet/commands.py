"""Request handlers behind the HTTP bridge.

Every handler takes the raw request payload and returns the same result
shape::

    {"success": bool, "message": str (optional), "data": ... (optional)}

Handlers are looked up by channel name (``"timesheet:update"`` and so on)
through :meth:`Commands.dispatch`.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any, Callable

from timesheet.auth import ROLE_ADMIN, ROLE_OPERATOR, ROLES, hash_password, verify_password
from timesheet.billing import InvalidTimeRange, compute_billable_amount
from timesheet.db import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED, STATUSES, TimesheetDB
from timesheet.reports import build_dashboard, calendar_month, dashboard_totals

log = logging.getLogger("timesheet.commands")

Result = dict[str, Any]

_CHANNELS: dict[str, str] = {}


class BadRequest(ValueError):
    pass


def channel(name: str):
    def register(fn):
        _CHANNELS[name] = fn.__name__
        return fn

    return register


def ok(data: Any = None, message: str | None = None) -> Result:
    out: Result = {"success": True}
    if message:
        out["message"] = message
    if data is not None:
        out["data"] = data
    return out


def fail(message: str) -> Result:
    return {"success": False, "message": message}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value if value is not None else "").strip().lower()
    return text in {"1", "true", "yes", "on"}


def _text(payload: dict[str, Any], key: str, default: str = "") -> str:
    value = payload.get(key, default)
    return str(value if value is not None else "").strip()


def _require_int(payload: Any, key: str) -> int:
    raw = payload.get(key) if isinstance(payload, dict) else payload
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise BadRequest(f"{key} is required") from e


def _opt_id(value: Any) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise BadRequest(f"invalid id: {value!r}") from e


def _as_dict(payload: Any) -> dict[str, Any]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequest("payload must be an object")
    return payload


class Commands:
    def __init__(
        self,
        db: TimesheetDB,
        *,
        min_password_length: int = 4,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.db = db
        self.min_password_length = int(min_password_length)
        self._today = today

    def dispatch(self, name: str, payload: Any = None) -> Result:
        method = _CHANNELS.get(name)
        if method is None:
            return fail(f"Unknown channel: {name}")
        try:
            return getattr(self, method)(payload)
        except BadRequest as e:
            return fail(str(e))
        except sqlite3.Error as e:
            log.exception("Store error on %s", name)
            return fail(str(e))

    def _check_password(self, password: str) -> str | None:
        if not password:
            return "Password required"
        if len(password) < self.min_password_length:
            return f"Password must be at least {self.min_password_length} characters"
        return None

    # auth

    @channel("auth:login")
    def login(self, payload: Any) -> Result:
        body = _as_dict(payload)
        username = _text(body, "username")
        password = str(body.get("password", "") or "")

        row = self.db.get_user_auth(username)
        if row is None:
            return fail("User not found")
        # an inactive admin can still sign in so the app is never locked out
        if not row.active and row.role != ROLE_ADMIN:
            return fail("User is deactivated")
        if not verify_password(password, row.password_hash):
            return fail("Incorrect password")

        user = self.db.get_user(row.id)
        return ok(data=user.to_dict() if user else None)

    @channel("user:changePassword")
    def change_password(self, payload: Any) -> Result:
        body = _as_dict(payload)
        user_id = _require_int(body, "userId")
        old_password = str(body.get("oldPassword", "") or "")
        new_password = str(body.get("newPassword", "") or "")

        row = self.db.get_user_auth_by_id(user_id)
        if row is None:
            return fail("User not found")
        if not verify_password(old_password, row.password_hash):
            return fail("Old password incorrect")
        problem = self._check_password(new_password)
        if problem:
            return fail(problem)

        self.db.set_user_password(user_id, password_hash=hash_password(new_password))
        return ok()

    # admin: users

    @channel("admin:createUser")
    def create_user(self, payload: Any) -> Result:
        body = _as_dict(payload)
        username = _text(body, "username")
        password = str(body.get("password", "") or "")
        role = _text(body, "role", ROLE_OPERATOR) or ROLE_OPERATOR
        company_id = _opt_id(body.get("company_id"))

        if not username or not password:
            return fail("Provide username & password")
        if role not in ROLES:
            return fail(f"Invalid role: {role}")
        problem = self._check_password(password)
        if problem:
            return fail(problem)

        user_id = self.db.create_user(
            username=username,
            password_hash=hash_password(password),
            role=role,
            company_id=company_id,
        )
        log.info("Created user '%s' (%s)", username, role)
        return ok(data={"id": user_id})

    @channel("admin:getUsers")
    def get_users(self, payload: Any = None) -> Result:
        return ok(data=[u.to_dict() for u in self.db.list_users()])

    @channel("admin:resetPassword")
    def reset_password(self, payload: Any) -> Result:
        body = _as_dict(payload)
        user_id = _require_int(body, "userId")
        new_password = str(body.get("newPassword", "") or "")
        problem = self._check_password(new_password)
        if problem:
            return fail(problem)
        if not self.db.set_user_password(user_id, password_hash=hash_password(new_password)):
            return fail("User not found")
        return ok()

    @channel("admin:editUser")
    def edit_user(self, payload: Any) -> Result:
        body = _as_dict(payload)
        user_id = _require_int(body, "userId")
        current = self.db.get_user(user_id)
        if current is None:
            return fail("User not found")

        username = _text(body, "username", current.username)
        role = _text(body, "role", current.role)
        company_id = _opt_id(body["company_id"]) if "company_id" in body else current.company_id
        active = _as_bool(body["active"]) if "active" in body else current.active

        if not username:
            return fail("Username required")
        if role not in ROLES:
            return fail(f"Invalid role: {role}")

        self.db.update_user(user_id, username=username, role=role, company_id=company_id, active=active)
        return ok()

    @channel("admin:deleteUser")
    def delete_user(self, payload: Any) -> Result:
        user_id = _require_int(_as_dict(payload), "userId")
        if not self.db.delete_user(user_id):
            return fail("User not found")
        log.info("Deleted user %s with their timesheets", user_id)
        return ok()

    # companies

    @channel("company:list")
    def list_companies(self, payload: Any = None) -> Result:
        return ok(data=[c.to_dict() for c in self.db.list_companies()])

    @channel("company:create")
    def create_company(self, payload: Any) -> Result:
        name = _text(_as_dict(payload), "name")
        if not name:
            return fail("Company name required")
        return ok(data={"id": self.db.create_company(name)})

    # timesheets

    def _entry_values(self, body: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
        merged = {**current, **{k: v for k, v in body.items() if k in current}}

        entry_date = str(merged["date"] or "").strip()
        if not entry_date:
            raise BadRequest("Date required")
        status = str(merged["status"] or STATUS_PENDING)
        if status not in STATUSES:
            raise BadRequest(f"Invalid status: {status}")

        amount = compute_billable_amount(
            merged["start_time"],
            merged["end_time"],
            merged["break_minutes"],
            merged["rate_per_hour"],
        )
        return {
            "date": entry_date,
            "task": str(merged["task"] or "").strip(),
            "start_time": str(merged["start_time"]).strip(),
            "end_time": str(merged["end_time"]).strip(),
            "break_minutes": int(merged["break_minutes"] or 0),
            "billable": _as_bool(merged["billable"]),
            "rate_per_hour": float(merged["rate_per_hour"] or 0),
            "billable_amount": float(amount),
            "company_id": _opt_id(merged["company_id"]),
            "status": status,
        }

    @channel("timesheet:add")
    def add_timesheet(self, payload: Any) -> Result:
        body = _as_dict(payload)
        user_id = _require_int(body, "user_id")
        blank = {
            "date": "",
            "task": "",
            "start_time": "",
            "end_time": "",
            "break_minutes": 0,
            "billable": False,
            "rate_per_hour": 0,
            "company_id": None,
            "status": STATUS_PENDING,
        }
        try:
            values = self._entry_values(body, blank)
        except InvalidTimeRange as e:
            return fail(str(e))

        timesheet_id = self.db.create_timesheet(user_id=user_id, **values)
        return ok(data={"id": timesheet_id, "billable_amount": values["billable_amount"]})

    @channel("timesheet:getByUser")
    def timesheets_by_user(self, payload: Any) -> Result:
        user_id = _require_int(payload, "userId")
        return ok(data=[r.to_dict() for r in self.db.list_timesheets(user_id=user_id)])

    @channel("timesheet:getAll")
    def all_timesheets(self, payload: Any = None) -> Result:
        return ok(data=[r.to_dict() for r in self.db.list_timesheets()])

    @channel("timesheet:update")
    def update_timesheet(self, payload: Any) -> Result:
        body = _as_dict(payload)
        timesheet_id = _require_int(body, "id")
        existing = self.db.get_timesheet(timesheet_id)
        if existing is None:
            return fail("Timesheet not found")

        current = {
            "date": existing.date,
            "task": existing.task,
            "start_time": existing.start_time,
            "end_time": existing.end_time,
            "break_minutes": existing.break_minutes,
            "billable": existing.billable,
            "rate_per_hour": existing.rate_per_hour,
            "company_id": existing.company_id,
            "status": existing.status,
        }
        try:
            values = self._entry_values(body, current)
        except InvalidTimeRange as e:
            return fail(str(e))

        self.db.update_timesheet(timesheet_id, **values)
        return ok(data={"id": timesheet_id, "billable_amount": values["billable_amount"]})

    @channel("timesheet:delete")
    def delete_timesheet(self, payload: Any) -> Result:
        timesheet_id = _require_int(_as_dict(payload), "id")
        if not self.db.delete_timesheet(timesheet_id):
            return fail("Timesheet not found")
        return ok()

    @channel("timesheet:approve")
    def approve_timesheet(self, payload: Any) -> Result:
        body = _as_dict(payload)
        timesheet_id = _require_int(body, "id")
        status = STATUS_APPROVED if _text(body, "action") == "approve" else STATUS_REJECTED
        admin_id = _opt_id(body.get("adminId"))
        note = _text(body, "note")

        if not self.db.decide_timesheet(timesheet_id, status=status, admin_id=admin_id, note=note):
            return fail("Timesheet not found")
        log.info("Timesheet %s %s by user %s", timesheet_id, status, admin_id)
        return ok(data={"status": status})

    # comments

    @channel("comment:add")
    def add_comment(self, payload: Any) -> Result:
        body = _as_dict(payload)
        timesheet_id = _require_int(body, "timesheet_id")
        comment = _text(body, "comment")
        if not comment:
            return fail("Comment required")
        if self.db.get_timesheet(timesheet_id) is None:
            return fail("Timesheet not found")

        comment_id = self.db.add_comment(
            timesheet_id=timesheet_id,
            user_id=_opt_id(body.get("user_id")),
            commenter_role=_text(body, "commenter_role", ROLE_OPERATOR) or ROLE_OPERATOR,
            comment=comment,
        )
        return ok(data={"id": comment_id})

    @channel("comment:getByTimesheet")
    def comments_by_timesheet(self, payload: Any) -> Result:
        timesheet_id = _require_int(payload, "timesheetId")
        return ok(data=[c.to_dict() for c in self.db.list_comments(timesheet_id)])

    # reports

    @channel("report:totals")
    def report_totals(self, payload: Any = None) -> Result:
        return ok(data=dashboard_totals(self.db, today=self._today()).to_dict())

    @channel("report:dashboard")
    def report_dashboard(self, payload: Any = None) -> Result:
        summary = build_dashboard(self.db.list_timesheets(), today=self._today())
        return ok(data=summary.to_dict())

    @channel("report:calendar")
    def report_calendar(self, payload: Any = None) -> Result:
        body = _as_dict(payload)
        today = self._today()
        year = _opt_id(body.get("year"))
        month = _opt_id(body.get("month"))
        if year is None:
            year = today.year
        if month is None:
            month = today.month
        if not 1 <= month <= 12:
            return fail("month must be between 1 and 12")
        if not 1 <= year <= 9999:
            return fail("year out of range")
        username = _text(body, "username") or None
        cal = calendar_month(self.db.list_timesheets(), year, month, username=username, today=today)
        return ok(data=cal.to_dict())
