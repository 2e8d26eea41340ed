from __future__ import annotations

import argparse
import getpass
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from timesheet.config import CONFIG_ENV, ConfigError, Settings, load_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timesheet")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--config", type=Path, default=None, help="YAML settings file")
    parser.add_argument("--data-dir", type=Path, default=None)
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API (default)")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8010)
    serve.add_argument("--reload", action="store_true")

    pw = sub.add_parser("set-password", help="Set a user's password from the terminal")
    pw.add_argument("--username", default="admin")

    return parser


def _set_password(settings: Settings, *, username: str) -> int:
    from timesheet.auth import hash_password
    from timesheet.db import TimesheetDB

    user = str(username or "admin").strip() or "admin"
    first = getpass.getpass("New password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        print("Passwords do not match.")
        return 1

    if len(first) < settings.min_password_length:
        print(f"Password must be at least {settings.min_password_length} characters.")
        return 1

    db = TimesheetDB(settings.db_path, admin_username=settings.admin_username, admin_password=settings.admin_password)
    try:
        row = db.get_user_by_name(user)
        if row is None:
            print(f"User not found: {user}")
            return 1
        if not db.set_user_password(row.id, password_hash=hash_password(first)):
            print("Password update failed.")
            return 1
    finally:
        db.close()

    print(f"Password updated for '{user}'.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    load_dotenv()

    # exported so the app module resolves the same settings under uvicorn
    if args.config is not None:
        os.environ[CONFIG_ENV] = str(args.config.resolve())
    if args.data_dir is not None:
        os.environ["TIMESHEET_DATA_DIR"] = str(args.data_dir.resolve())

    try:
        settings = load_settings()
    except ConfigError as e:
        logging.error("%s", e)
        return 2

    if args.command == "set-password":
        return _set_password(settings, username=args.username)

    try:
        import uvicorn  # type: ignore
    except ImportError:
        logging.error("uvicorn is not installed. Install dependencies: pip install -e .")
        return 1

    host = getattr(args, "host", "127.0.0.1")
    port = int(getattr(args, "port", 8010))
    reload = bool(getattr(args, "reload", False))
    uvicorn.run("timesheet.app:app", host=host, port=port, reload=reload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
