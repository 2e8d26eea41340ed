from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from timesheet.auth import ROLE_ADMIN, get_user_id, login_session, logout_session
from timesheet.commands import Commands, Result, fail
from timesheet.config import load_settings
from timesheet.db import STATUS_APPROVED, STATUS_PENDING, TimesheetDB, TimesheetRow, UserRow


log = logging.getLogger("timesheet")


SETTINGS = load_settings()
DB = TimesheetDB(
    SETTINGS.db_path,
    admin_username=SETTINGS.admin_username,
    admin_password=SETTINGS.admin_password,
)
COMMANDS = Commands(DB, min_password_length=SETTINGS.min_password_length)

app = FastAPI(title="Timesheet")

_session_secret = SETTINGS.secret_key or secrets.token_urlsafe(48)


@app.on_event("startup")
def _startup() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    log.info("Using database %s", SETTINGS.db_path)
    if not SETTINGS.secret_key:
        log.warning("TIMESHEET_SECRET_KEY is not set. Session secret will rotate on restart.")
    if not SETTINGS.https_only:
        log.warning("TIMESHEET_HTTPS_ONLY is off. Enable it when serving over HTTPS.")


@app.on_event("shutdown")
def _shutdown() -> None:
    DB.close()


def _security_headers(response) -> None:
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "same-origin"
    response.headers["Cache-Control"] = "no-store"
    if SETTINGS.https_only:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"


@app.middleware("http")
async def _auth_middleware(request: Request, call_next):  # type: ignore
    path = request.url.path
    public = {"/health", "/api/login"}
    if path in public:
        resp = await call_next(request)
        _security_headers(resp)
        return resp

    uid = get_user_id(request.session)
    if uid is None:
        resp = JSONResponse(status_code=401, content=fail("authentication required"))
        _security_headers(resp)
        return resp

    user = DB.get_user(uid)
    if user is None or (not user.active and user.role != ROLE_ADMIN):
        logout_session(request.session)
        resp = JSONResponse(status_code=401, content=fail("invalid session"))
        _security_headers(resp)
        return resp

    resp = await call_next(request)
    _security_headers(resp)
    return resp


# Registered after _auth_middleware so both wrap it: the session is loaded
# before the auth check reads it.
app.add_middleware(
    SessionMiddleware,
    secret_key=_session_secret,
    session_cookie="timesheet_session",
    https_only=SETTINGS.https_only,
    same_site="lax",
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=SETTINGS.allowed_hosts)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)))


def _respond(result: Result, *, failure_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=200 if result.get("success") else failure_code, content=result)


async def _json_body(request: Request) -> dict[str, Any]:
    # plain form posts from other sites cannot set this content type
    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if content_type != "application/json":
        raise HTTPException(status_code=415, detail="Content-Type must be application/json")
    try:
        body = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from e
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return body


def _require_user(request: Request) -> UserRow:
    uid = get_user_id(request.session)
    if uid is None:
        raise HTTPException(status_code=401, detail="authentication required")
    user = DB.get_user(uid)
    if user is None:
        raise HTTPException(status_code=401, detail="invalid session")
    return user


def _require_admin(request: Request) -> UserRow:
    user = _require_user(request)
    if user.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="admin only")
    return user


def _owned_timesheet(user: UserRow, timesheet_id: int, *, for_write: bool) -> TimesheetRow:
    row = DB.get_timesheet(timesheet_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Timesheet not found")
    if user.role == ROLE_ADMIN:
        return row
    if row.user_id != user.id:
        raise HTTPException(status_code=403, detail="not your timesheet")
    if for_write and row.status == STATUS_APPROVED:
        raise HTTPException(status_code=403, detail="Approved timesheets cannot be changed")
    return row


@app.get("/health", response_class=PlainTextResponse)
def health() -> str:
    return "ok"


# auth


@app.post("/api/login")
async def login(request: Request):
    body = await _json_body(request)
    result = COMMANDS.dispatch("auth:login", body)
    if result["success"]:
        user = result["data"]
        login_session(request.session, user_id=user["id"], username=user["username"], role=user["role"])
    return _respond(result, failure_code=401)


@app.post("/api/logout")
def logout(request: Request):
    logout_session(request.session)
    return {"success": True}


@app.get("/api/me")
def me(request: Request):
    user = _require_user(request)
    return {"success": True, "data": user.to_dict()}


@app.post("/api/me/password")
async def change_password(request: Request):
    user = _require_user(request)
    body = await _json_body(request)
    result = COMMANDS.dispatch(
        "user:changePassword",
        {
            "userId": user.id,
            "oldPassword": body.get("oldPassword", ""),
            "newPassword": body.get("newPassword", ""),
        },
    )
    if result["success"]:
        logout_session(request.session)
    return _respond(result)


# users


@app.get("/api/users")
def list_users(request: Request):
    _require_admin(request)
    return _respond(COMMANDS.dispatch("admin:getUsers"))


@app.post("/api/users")
async def create_user(request: Request):
    _require_admin(request)
    body = await _json_body(request)
    return _respond(COMMANDS.dispatch("admin:createUser", body))


@app.put("/api/users/{user_id}")
async def edit_user(request: Request, user_id: int):
    _require_admin(request)
    body = await _json_body(request)
    return _respond(COMMANDS.dispatch("admin:editUser", {**body, "userId": user_id}))


@app.post("/api/users/{user_id}/password")
async def reset_password(request: Request, user_id: int):
    _require_admin(request)
    body = await _json_body(request)
    return _respond(COMMANDS.dispatch("admin:resetPassword", {"userId": user_id, "newPassword": body.get("newPassword", "")}))


@app.delete("/api/users/{user_id}")
def delete_user(request: Request, user_id: int):
    _require_admin(request)
    return _respond(COMMANDS.dispatch("admin:deleteUser", {"userId": user_id}))


# companies


@app.get("/api/companies")
def list_companies(request: Request):
    _require_user(request)
    return _respond(COMMANDS.dispatch("company:list"))


@app.post("/api/companies")
async def create_company(request: Request):
    _require_admin(request)
    body = await _json_body(request)
    return _respond(COMMANDS.dispatch("company:create", body))


# timesheets


@app.get("/api/timesheets")
def all_timesheets(request: Request):
    _require_admin(request)
    return _respond(COMMANDS.dispatch("timesheet:getAll"))


@app.get("/api/my/timesheets")
def my_timesheets(request: Request):
    user = _require_user(request)
    return _respond(COMMANDS.dispatch("timesheet:getByUser", user.id))


@app.post("/api/my/timesheets")
async def add_timesheet(request: Request):
    user = _require_user(request)
    body = await _json_body(request)
    entry = {**body, "user_id": user.id}
    if user.role == ROLE_ADMIN and body.get("user_id"):
        entry["user_id"] = body["user_id"]
    else:
        entry["status"] = STATUS_PENDING
    return _respond(COMMANDS.dispatch("timesheet:add", entry))


@app.put("/api/timesheets/{timesheet_id}")
async def update_timesheet(request: Request, timesheet_id: int):
    user = _require_user(request)
    _owned_timesheet(user, timesheet_id, for_write=True)
    body = await _json_body(request)
    entry = {**body, "id": timesheet_id}
    if user.role != ROLE_ADMIN:
        entry.pop("status", None)
    return _respond(COMMANDS.dispatch("timesheet:update", entry))


@app.delete("/api/timesheets/{timesheet_id}")
def delete_timesheet(request: Request, timesheet_id: int):
    user = _require_user(request)
    _owned_timesheet(user, timesheet_id, for_write=True)
    return _respond(COMMANDS.dispatch("timesheet:delete", {"id": timesheet_id}))


@app.post("/api/timesheets/{timesheet_id}/approve")
async def approve_timesheet(request: Request, timesheet_id: int):
    admin = _require_admin(request)
    body = await _json_body(request)
    return _respond(
        COMMANDS.dispatch(
            "timesheet:approve",
            {"id": timesheet_id, "action": body.get("action", ""), "adminId": admin.id, "note": body.get("note", "")},
        )
    )


# comments


@app.get("/api/timesheets/{timesheet_id}/comments")
def list_comments(request: Request, timesheet_id: int):
    user = _require_user(request)
    _owned_timesheet(user, timesheet_id, for_write=False)
    return _respond(COMMANDS.dispatch("comment:getByTimesheet", timesheet_id))


@app.post("/api/timesheets/{timesheet_id}/comments")
async def add_comment(request: Request, timesheet_id: int):
    user = _require_user(request)
    _owned_timesheet(user, timesheet_id, for_write=False)
    body = await _json_body(request)
    return _respond(
        COMMANDS.dispatch(
            "comment:add",
            {
                "timesheet_id": timesheet_id,
                "user_id": user.id,
                "commenter_role": user.role,
                "comment": body.get("comment", ""),
            },
        )
    )


# reports


@app.get("/api/reports/totals")
def report_totals(request: Request):
    _require_admin(request)
    return _respond(COMMANDS.dispatch("report:totals"))


@app.get("/api/reports/dashboard")
def report_dashboard(request: Request):
    _require_admin(request)
    return _respond(COMMANDS.dispatch("report:dashboard"))


@app.get("/api/calendar")
def report_calendar(request: Request, year: int | None = None, month: int | None = None, username: str | None = None):
    _require_admin(request)
    return _respond(
        COMMANDS.dispatch(
            "report:calendar",
            {"year": year, "month": month, "username": username or ""},
        )
    )
