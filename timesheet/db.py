from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from timesheet.auth import ROLE_ADMIN, ROLE_OPERATOR, hash_password
from timesheet.config import DEFAULT_ADMIN_PASSWORD, DEFAULT_ADMIN_USERNAME

SCHEMA_VERSION = 2

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUSES = {STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED}

log = logging.getLogger("timesheet.db")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _opt_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class UserRow:
    id: int
    username: str
    role: str
    company_id: int | None
    company_name: str | None
    active: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UserAuthRow:
    id: int
    username: str
    role: str
    password_hash: str
    active: bool


@dataclass(frozen=True)
class CompanyRow:
    id: int
    company_name: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TimesheetRow:
    id: int
    user_id: int | None
    username: str | None
    date: str
    task: str
    start_time: str
    end_time: str
    break_minutes: int
    billable: bool
    rate_per_hour: float
    billable_amount: float
    company_id: int | None
    company_name: str | None
    status: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CommentRow:
    id: int
    timesheet_id: int
    user_id: int | None
    username: str | None
    commenter_role: str
    comment: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TimesheetDB:
    def __init__(
        self,
        db_path: Path,
        *,
        admin_username: str = DEFAULT_ADMIN_USERNAME,
        admin_password: str = DEFAULT_ADMIN_PASSWORD,
    ) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._init_schema()
        self.ensure_bootstrap_admin(admin_username, admin_password)

    def close(self) -> None:
        self._conn.close()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            )
            """
        )
        version = self.get_setting_int("schema_version", 0)
        if version > SCHEMA_VERSION:
            raise RuntimeError(f"Unsupported schema_version={version}")

        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS companies (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              company_name TEXT NOT NULL UNIQUE
            )
            """
        )

        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              username TEXT NOT NULL UNIQUE,
              password_hash TEXT NOT NULL,
              role TEXT NOT NULL DEFAULT 'operator',
              company_id INTEGER,
              active INTEGER NOT NULL DEFAULT 1,
              FOREIGN KEY(company_id) REFERENCES companies(id) ON DELETE SET NULL
            )
            """
        )

        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS timesheets (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id INTEGER,
              date TEXT NOT NULL DEFAULT '',
              task TEXT NOT NULL DEFAULT '',
              start_time TEXT NOT NULL DEFAULT '',
              end_time TEXT NOT NULL DEFAULT '',
              break_minutes INTEGER NOT NULL DEFAULT 0,
              billable INTEGER NOT NULL DEFAULT 0,
              rate_per_hour REAL NOT NULL DEFAULT 0,
              billable_amount REAL NOT NULL DEFAULT 0,
              company_id INTEGER,
              status TEXT NOT NULL DEFAULT 'pending',
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
              FOREIGN KEY(company_id) REFERENCES companies(id) ON DELETE SET NULL
            )
            """
        )

        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS comments (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              timesheet_id INTEGER NOT NULL,
              user_id INTEGER,
              commenter_role TEXT NOT NULL DEFAULT '',
              comment TEXT NOT NULL DEFAULT '',
              created_at TEXT NOT NULL,
              FOREIGN KEY(timesheet_id) REFERENCES timesheets(id) ON DELETE CASCADE,
              FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE SET NULL
            )
            """
        )

        # Databases written before version 2 lack these columns.
        self._ensure_column("users", "active", "INTEGER NOT NULL DEFAULT 1")
        self._ensure_column("timesheets", "status", "TEXT NOT NULL DEFAULT 'pending'")

        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_timesheets_user_date ON timesheets(user_id, date)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_timesheets_date ON timesheets(date)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_comments_timesheet ON comments(timesheet_id)")
        if version < SCHEMA_VERSION:
            if version:
                log.info("Migrated schema_version %s -> %s", version, SCHEMA_VERSION)
            self.set_setting("schema_version", str(SCHEMA_VERSION))
        self._conn.commit()

    def _ensure_column(self, table: str, column: str, ddl: str) -> None:
        cols = {str(r["name"]) for r in self._conn.execute(f"PRAGMA table_info({table})").fetchall()}
        if column in cols:
            return
        self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")

    def set_setting(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO settings(key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )
        self._conn.commit()

    def get_setting(self, key: str, default: str = "") -> str:
        row = self._conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        if not row:
            return default
        value = row["value"]
        if value is None:
            return default
        return str(value)

    def get_setting_int(self, key: str, default: int = 0) -> int:
        return _as_int(self.get_setting(key, str(default)), default)

    def ensure_bootstrap_admin(self, username: str, password: str) -> None:
        row = self._conn.execute("SELECT id FROM users WHERE username=?", (username,)).fetchone()
        if row:
            return

        self._conn.execute(
            "INSERT INTO users(username, password_hash, role, active) VALUES (?, ?, ?, 1)",
            (username, hash_password(password), ROLE_ADMIN),
        )
        self._conn.commit()
        log.info("Created bootstrap admin user '%s'", username)

    # users

    def _to_user(self, row: sqlite3.Row) -> UserRow:
        return UserRow(
            id=int(row["id"]),
            username=str(row["username"]),
            role=str(row["role"]),
            company_id=_opt_int(row["company_id"]),
            company_name=str(row["company_name"]) if row["company_name"] is not None else None,
            active=bool(row["active"]),
        )

    def _to_user_auth(self, row: sqlite3.Row) -> UserAuthRow:
        return UserAuthRow(
            id=int(row["id"]),
            username=str(row["username"]),
            role=str(row["role"]),
            password_hash=str(row["password_hash"]),
            active=bool(row["active"]),
        )

    _USER_SELECT = """
        SELECT u.*, c.company_name
        FROM users u
        LEFT JOIN companies c ON c.id=u.company_id
    """

    def get_user(self, user_id: int) -> UserRow | None:
        row = self._conn.execute(self._USER_SELECT + " WHERE u.id=?", (int(user_id),)).fetchone()
        if not row:
            return None
        return self._to_user(row)

    def get_user_by_name(self, username: str) -> UserRow | None:
        row = self._conn.execute(self._USER_SELECT + " WHERE u.username=?", (username,)).fetchone()
        if not row:
            return None
        return self._to_user(row)

    def get_user_auth(self, username: str) -> UserAuthRow | None:
        row = self._conn.execute("SELECT * FROM users WHERE username=?", (username,)).fetchone()
        if not row:
            return None
        return self._to_user_auth(row)

    def get_user_auth_by_id(self, user_id: int) -> UserAuthRow | None:
        row = self._conn.execute("SELECT * FROM users WHERE id=?", (int(user_id),)).fetchone()
        if not row:
            return None
        return self._to_user_auth(row)

    def list_users(self) -> list[UserRow]:
        rows = self._conn.execute(self._USER_SELECT + " ORDER BY u.id DESC").fetchall()
        return [self._to_user(row) for row in rows]

    def count_users(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS c FROM users").fetchone()
        return int(row["c"] or 0)

    def create_user(self, *, username: str, password_hash: str, role: str = ROLE_OPERATOR, company_id: int | None = None) -> int:
        cur = self._conn.execute(
            "INSERT INTO users(username, password_hash, role, company_id, active) VALUES (?, ?, ?, ?, 1)",
            (username, password_hash, role, company_id),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def update_user(self, user_id: int, *, username: str, role: str, company_id: int | None, active: bool) -> bool:
        cur = self._conn.execute(
            "UPDATE users SET username=?, role=?, company_id=?, active=? WHERE id=?",
            (username, role, company_id, 1 if active else 0, int(user_id)),
        )
        self._conn.commit()
        return int(cur.rowcount or 0) > 0

    def set_user_password(self, user_id: int, *, password_hash: str) -> bool:
        cur = self._conn.execute(
            "UPDATE users SET password_hash=? WHERE id=?",
            (password_hash, int(user_id)),
        )
        self._conn.commit()
        return int(cur.rowcount or 0) > 0

    def delete_user(self, user_id: int) -> bool:
        # timesheets and their comments go through ON DELETE CASCADE
        cur = self._conn.execute("DELETE FROM users WHERE id=?", (int(user_id),))
        self._conn.commit()
        return int(cur.rowcount or 0) > 0

    # companies

    def list_companies(self) -> list[CompanyRow]:
        rows = self._conn.execute("SELECT * FROM companies ORDER BY company_name ASC").fetchall()
        return [CompanyRow(id=int(row["id"]), company_name=str(row["company_name"])) for row in rows]

    def count_companies(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS c FROM companies").fetchone()
        return int(row["c"] or 0)

    def create_company(self, name: str) -> int:
        cur = self._conn.execute("INSERT INTO companies(company_name) VALUES (?)", (name,))
        self._conn.commit()
        return int(cur.lastrowid)

    # timesheets

    def _to_timesheet(self, row: sqlite3.Row) -> TimesheetRow:
        return TimesheetRow(
            id=int(row["id"]),
            user_id=_opt_int(row["user_id"]),
            username=str(row["username"]) if row["username"] is not None else None,
            date=str(row["date"] or ""),
            task=str(row["task"] or ""),
            start_time=str(row["start_time"] or ""),
            end_time=str(row["end_time"] or ""),
            break_minutes=_as_int(row["break_minutes"], 0),
            billable=_as_int(row["billable"], 0) == 1,
            rate_per_hour=_as_float(row["rate_per_hour"], 0.0),
            billable_amount=_as_float(row["billable_amount"], 0.0),
            company_id=_opt_int(row["company_id"]),
            company_name=str(row["company_name"]) if row["company_name"] is not None else None,
            status=str(row["status"] or STATUS_PENDING),
        )

    def list_timesheets(self, *, user_id: int | None = None, timesheet_id: int | None = None) -> list[TimesheetRow]:
        sql = """
            SELECT t.*, u.username, c.company_name
            FROM timesheets t
            LEFT JOIN users u ON u.id=t.user_id
            LEFT JOIN companies c ON c.id=t.company_id
        """
        args: list[Any] = []
        clauses: list[str] = []
        if user_id is not None:
            clauses.append("t.user_id=?")
            args.append(int(user_id))
        if timesheet_id is not None:
            clauses.append("t.id=?")
            args.append(int(timesheet_id))
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY t.date DESC, t.id DESC"

        rows = self._conn.execute(sql, tuple(args)).fetchall()
        return [self._to_timesheet(row) for row in rows]

    def get_timesheet(self, timesheet_id: int) -> TimesheetRow | None:
        rows = self.list_timesheets(timesheet_id=int(timesheet_id))
        if rows:
            return rows[0]
        return None

    def count_timesheets(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS c FROM timesheets").fetchone()
        return int(row["c"] or 0)

    def sum_billable_amount(self) -> float:
        row = self._conn.execute("SELECT SUM(billable_amount) AS s FROM timesheets").fetchone()
        return _as_float(row["s"], 0.0)

    def create_timesheet(
        self,
        *,
        user_id: int,
        date: str,
        task: str,
        start_time: str,
        end_time: str,
        break_minutes: int,
        billable: bool,
        rate_per_hour: float,
        billable_amount: float,
        company_id: int | None,
        status: str = STATUS_PENDING,
    ) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO timesheets(
              user_id, date, task, start_time, end_time, break_minutes,
              billable, rate_per_hour, billable_amount, company_id, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(user_id),
                date,
                task,
                start_time,
                end_time,
                int(break_minutes),
                1 if billable else 0,
                float(rate_per_hour),
                float(billable_amount),
                company_id,
                status,
            ),
        )
        self._conn.commit()
        return int(cur.lastrowid)

    def update_timesheet(
        self,
        timesheet_id: int,
        *,
        date: str,
        task: str,
        start_time: str,
        end_time: str,
        break_minutes: int,
        billable: bool,
        rate_per_hour: float,
        billable_amount: float,
        company_id: int | None,
        status: str,
    ) -> bool:
        cur = self._conn.execute(
            """
            UPDATE timesheets
            SET date=?, task=?, start_time=?, end_time=?, break_minutes=?, billable=?,
                rate_per_hour=?, billable_amount=?, company_id=?, status=?
            WHERE id=?
            """,
            (
                date,
                task,
                start_time,
                end_time,
                int(break_minutes),
                1 if billable else 0,
                float(rate_per_hour),
                float(billable_amount),
                company_id,
                status,
                int(timesheet_id),
            ),
        )
        self._conn.commit()
        return int(cur.rowcount or 0) > 0

    def delete_timesheet(self, timesheet_id: int) -> bool:
        cur = self._conn.execute("DELETE FROM timesheets WHERE id=?", (int(timesheet_id),))
        self._conn.commit()
        return int(cur.rowcount or 0) > 0

    def decide_timesheet(self, timesheet_id: int, *, status: str, admin_id: int | None, note: str = "") -> bool:
        cur = self._conn.execute("UPDATE timesheets SET status=? WHERE id=?", (status, int(timesheet_id)))
        changed = int(cur.rowcount or 0) > 0
        if changed and note:
            self._insert_comment(timesheet_id, admin_id, ROLE_ADMIN, note)
        self._conn.commit()
        return changed

    # comments

    def _insert_comment(self, timesheet_id: int, user_id: int | None, commenter_role: str, comment: str) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO comments(timesheet_id, user_id, commenter_role, comment, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (int(timesheet_id), user_id, commenter_role, comment, now_iso()),
        )
        return int(cur.lastrowid)

    def add_comment(self, *, timesheet_id: int, user_id: int | None, commenter_role: str, comment: str) -> int:
        comment_id = self._insert_comment(timesheet_id, user_id, commenter_role, comment)
        self._conn.commit()
        return comment_id

    def list_comments(self, timesheet_id: int) -> list[CommentRow]:
        rows = self._conn.execute(
            """
            SELECT c.*, u.username
            FROM comments c
            LEFT JOIN users u ON u.id=c.user_id
            WHERE c.timesheet_id=?
            ORDER BY c.created_at ASC, c.id ASC
            """,
            (int(timesheet_id),),
        ).fetchall()
        out: list[CommentRow] = []
        for row in rows:
            out.append(
                CommentRow(
                    id=int(row["id"]),
                    timesheet_id=int(row["timesheet_id"]),
                    user_id=_opt_int(row["user_id"]),
                    username=str(row["username"]) if row["username"] is not None else None,
                    commenter_role=str(row["commenter_role"] or ""),
                    comment=str(row["comment"] or ""),
                    created_at=str(row["created_at"]),
                )
            )
        return out
