from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy import func
from werkzeug.security import check_password_hash

from app.portal.models import Account, Role

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
MIN_PASSWORD_LENGTH = 8


def _is_taken(s: "Session", column, value: str, exclude_id: int | None) -> bool:
    q = s.query(Account.id).filter(func.lower(column) == value.lower())
    if exclude_id is not None:
        q = q.filter(Account.id != exclude_id)
    return q.first() is not None


def _identity_errors(s: "Session", payload: dict, exclude_id: int | None = None) -> list[str]:
    errors = []
    username = (payload.get("username") or "").strip()
    email = (payload.get("email") or "").strip()

    if not username:
        errors.append("Username is required.")
    elif len(username) > 32:
        errors.append("Username must be at most 32 characters.")
    elif _is_taken(s, Account.username, username, exclude_id):
        errors.append("Username is already taken.")

    if not email:
        errors.append("Email is required.")
    elif not _EMAIL_RE.match(email):
        errors.append("Invalid email format.")
    elif _is_taken(s, Account.email, email, exclude_id):
        errors.append("An account with this email already exists.")
    return errors


def _role_errors(s: "Session", raw) -> list[str]:
    raw = str(raw or "").strip()
    if not raw:
        return []
    if not raw.isdigit() or s.get(Role, int(raw)) is None:
        return ["Selected role does not exist."]
    return []


def _password_errors(password: str, confirm: str | None) -> list[str]:
    if not password:
        return ["Password is required."]
    if len(password) < MIN_PASSWORD_LENGTH:
        return [f"Password must be at least {MIN_PASSWORD_LENGTH} characters."]
    if confirm is not None and password != confirm:
        return ["Passwords do not match."]
    return []


def validate_create(s: "Session", payload: dict) -> list[str]:
    return _identity_errors(s, payload) + _password_errors(
        payload.get("password") or "", payload.get("password_confirm") or ""
    ) + _role_errors(s, payload.get("role_id"))


def validate_register(s: "Session", payload: dict) -> list[str]:
    return validate_create(s, payload)


def validate_edit(s: "Session", account: Account, payload: dict) -> list[str]:
    return _identity_errors(s, payload, exclude_id=account.id) + _role_errors(s, payload.get("role_id"))


def validate_profile(s: "Session", account: Account, payload: dict) -> list[str]:
    """Profile changes must be confirmed with the current password."""
    errors = []
    if not check_password_hash(account.passhash, payload.get("password") or ""):
        errors.append("Current password is incorrect.")
    errors += _identity_errors(s, payload, exclude_id=account.id)
    new_password = payload.get("new_password") or ""
    if new_password.strip():
        errors += _password_errors(new_password, payload.get("new_password_confirm") or "")
    return errors


def validate_profile_delete(account: Account, payload: dict) -> list[str]:
    if not check_password_hash(account.passhash, payload.get("password") or ""):
        return ["Current password is incorrect."]
    return []
