from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml


CONFIG_ENV = "TIMESHEET_CONFIG"

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_PASSWORD = "Admin@123"


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path(".timesheet")
    secret_key: str = ""
    https_only: bool = False
    allowed_hosts: list[str] = field(default_factory=lambda: ["localhost", "127.0.0.1"])
    admin_username: str = DEFAULT_ADMIN_USERNAME
    admin_password: str = DEFAULT_ADMIN_PASSWORD
    min_password_length: int = 4

    @property
    def db_path(self) -> Path:
        return self.data_dir / "timesheet.sqlite3"


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    return text in {"1", "true", "yes", "on"}


def _resolve_dir(raw: str | Path, *, base: Path) -> Path:
    p = Path(raw)
    if not p.is_absolute():
        p = (base / p).resolve()
    return p


def parse_allowed_hosts(raw: str | list[str]) -> list[str]:
    if isinstance(raw, list):
        parts = [str(p).strip() for p in raw]
    else:
        parts = [p.strip() for p in str(raw or "").split(",")]
    out = [p for p in parts if p and p != "*"]
    if not out:
        return ["localhost", "127.0.0.1"]
    return out


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")

    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping (YAML dict).")
    return raw


def _from_mapping(settings: Settings, raw: dict[str, Any], *, base: Path) -> Settings:
    changes: dict[str, Any] = {}
    if "data_dir" in raw:
        changes["data_dir"] = _resolve_dir(raw["data_dir"], base=base)
    if "secret_key" in raw:
        changes["secret_key"] = str(raw["secret_key"] or "").strip()
    if "https_only" in raw:
        changes["https_only"] = _as_bool(raw["https_only"])
    if "allowed_hosts" in raw:
        hosts = raw["allowed_hosts"]
        if not isinstance(hosts, (list, str)):
            raise ConfigError("allowed_hosts must be a list or a comma separated string.")
        changes["allowed_hosts"] = parse_allowed_hosts(hosts)
    admin = raw.get("admin", {}) or {}
    if not isinstance(admin, dict):
        raise ConfigError("admin must be a mapping.")
    if admin.get("username"):
        changes["admin_username"] = str(admin["username"]).strip()
    if admin.get("password"):
        changes["admin_password"] = str(admin["password"])
    if "min_password_length" in raw:
        try:
            changes["min_password_length"] = max(1, int(raw["min_password_length"]))
        except (TypeError, ValueError) as e:
            raise ConfigError("min_password_length must be an integer.") from e
    return replace(settings, **changes)


def _from_env(settings: Settings) -> Settings:
    changes: dict[str, Any] = {}
    data_dir = (os.getenv("TIMESHEET_DATA_DIR", "") or "").strip()
    if data_dir:
        changes["data_dir"] = _resolve_dir(data_dir, base=Path.cwd())
    secret = (os.getenv("TIMESHEET_SECRET_KEY", "") or "").strip()
    if secret:
        changes["secret_key"] = secret
    https = os.getenv("TIMESHEET_HTTPS_ONLY")
    if https is not None:
        changes["https_only"] = _as_bool(https)
    hosts = os.getenv("TIMESHEET_ALLOWED_HOSTS")
    if hosts is not None:
        changes["allowed_hosts"] = parse_allowed_hosts(hosts)
    admin_user = (os.getenv("TIMESHEET_ADMIN_USER", "") or "").strip()
    if admin_user:
        changes["admin_username"] = admin_user
    admin_password = (os.getenv("TIMESHEET_ADMIN_PASSWORD", "") or "").strip()
    if admin_password:
        changes["admin_password"] = admin_password
    return replace(settings, **changes)


def load_settings(path: Path | None = None) -> Settings:
    """Resolve settings from defaults, an optional YAML file and the environment.

    The YAML file comes from ``path`` or ``$TIMESHEET_CONFIG``; relative
    ``data_dir`` values are resolved against the file's directory.
    Environment variables win over the file.
    """
    settings = Settings(data_dir=_resolve_dir(".timesheet", base=Path.cwd()))

    if path is None:
        raw_path = (os.getenv(CONFIG_ENV, "") or "").strip()
        path = Path(raw_path) if raw_path else None
    if path is not None:
        settings = _from_mapping(settings, _load_yaml(path), base=path.resolve().parent)

    return _from_env(settings)
