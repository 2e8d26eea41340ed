from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from typing import Any


ROLE_ADMIN = "admin"
ROLE_OPERATOR = "operator"
ROLES = {ROLE_ADMIN, ROLE_OPERATOR}

SESSION_USER_ID_KEY = "user_id"
SESSION_USER_KEY = "username"
SESSION_ROLE_KEY = "role"


def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def _b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def hash_password(password: str, *, iterations: int = 260_000) -> str:
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"pbkdf2_sha256${iterations}${_b64e(salt)}${_b64e(dk)}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iter_s, salt_s, hash_s = encoded.split("$", 3)
        if scheme != "pbkdf2_sha256":
            return False
        iterations = int(iter_s)
        salt = _b64d(salt_s)
        expected = _b64d(hash_s)
    except (AttributeError, ValueError):
        return False

    dk = hashlib.pbkdf2_hmac("sha256", str(password).encode("utf-8"), salt, iterations)
    return hmac.compare_digest(dk, expected)


def login_session(session: dict[str, Any], *, user_id: int, username: str, role: str) -> None:
    session[SESSION_USER_ID_KEY] = int(user_id)
    session[SESSION_USER_KEY] = username
    session[SESSION_ROLE_KEY] = role


def logout_session(session: dict[str, Any]) -> None:
    session.pop(SESSION_USER_ID_KEY, None)
    session.pop(SESSION_USER_KEY, None)
    session.pop(SESSION_ROLE_KEY, None)


def get_user_id(session: dict[str, Any]) -> int | None:
    raw = session.get(SESSION_USER_ID_KEY)
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None
