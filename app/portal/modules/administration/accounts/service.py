from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from app.portal.audit import diff, record_event
from app.portal.authorization import refresh_authorization
from app.portal.models import Account, Role

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def _clean(payload: dict, key: str) -> str:
    return (payload.get(key) or "").strip()


def _role_id(s: "Session", raw) -> int | None:
    raw = str(raw or "").strip()
    if not raw:
        return None
    role = s.get(Role, int(raw))
    if role is None:
        raise ValueError(f"Role {raw} does not exist.")
    return role.id


def _snapshot(account: Account) -> dict:
    return {
        "username": account.username,
        "email": account.email,
        "is_locked": account.is_locked,
        "role_id": account.role_id,
    }


def get_views(s: "Session") -> list[Account]:
    return s.query(Account).order_by(Account.created_at.desc(), Account.id.desc()).all()


def find_by_username(s: "Session", username: str) -> Account | None:
    return s.query(Account).filter(func.lower(Account.username) == username.strip().lower()).one_or_none()


def is_active(s: "Session", account_id: int | None) -> bool:
    if account_id is None:
        return False
    account = s.get(Account, account_id)
    return account is not None and not account.is_locked


def authenticate(s: "Session", username: str, password: str) -> Account | None:
    account = find_by_username(s, username)
    if account is None or account.is_locked or not check_password_hash(account.passhash, password):
        return None
    return account


def register(s: "Session", payload: dict) -> Account:
    """Self-service sign up: the new account has no role and therefore no permissions."""
    account = Account(
        username=_clean(payload, "username"),
        email=_clean(payload, "email").lower(),
        passhash=generate_password_hash(payload.get("password") or ""),
        is_locked=False,
    )
    s.add(account)
    s.flush()
    record_event(
        s,
        actor=account,
        action="account.register",
        entity_type="Account",
        entity_id=str(account.id),
        metadata={"username": account.username, "email": account.email},
    )
    s.commit()
    return account


def create_account(s: "Session", payload: dict, actor: Account) -> Account:
    account = Account(
        username=_clean(payload, "username"),
        email=_clean(payload, "email").lower(),
        passhash=generate_password_hash(payload.get("password") or ""),
        is_locked=False,
        role_id=_role_id(s, payload.get("role_id")),
    )
    s.add(account)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="account.create",
        entity_type="Account",
        entity_id=str(account.id),
        metadata=_snapshot(account),
    )
    s.commit()
    refresh_authorization()
    return account


def edit_account(s: "Session", account: Account, payload: dict, actor: Account) -> Account:
    before = _snapshot(account)

    account.username = _clean(payload, "username") or account.username
    account.email = (_clean(payload, "email") or account.email).lower()
    account.is_locked = bool(payload.get("is_locked"))
    account.role_id = _role_id(s, payload.get("role_id"))
    # Reload the relationship so role_title reflects the new role_id.
    s.flush()
    s.expire(account, ["role"])

    record_event(
        s,
        actor=actor,
        action="account.edit",
        entity_type="Account",
        entity_id=str(account.id),
        metadata={"username": account.username, "changes": diff(before, _snapshot(account))},
    )
    s.commit()
    refresh_authorization()
    return account


def delete_account(s: "Session", account: Account, actor: Account) -> None:
    record_event(
        s,
        actor=actor,
        action="account.delete",
        entity_type="Account",
        entity_id=str(account.id),
        metadata={"username": account.username, "email": account.email},
    )
    s.delete(account)
    s.commit()
    refresh_authorization()


def edit_profile(s: "Session", account: Account, payload: dict) -> Account:
    before = _snapshot(account)
    account.username = _clean(payload, "username") or account.username
    account.email = (_clean(payload, "email") or account.email).lower()

    password_changed = bool((payload.get("new_password") or "").strip())
    if password_changed:
        account.passhash = generate_password_hash(payload["new_password"])

    record_event(
        s,
        actor=account,
        action="profile.edit",
        entity_type="Account",
        entity_id=str(account.id),
        metadata={"changes": diff(before, _snapshot(account)), "password_changed": password_changed},
    )
    s.commit()
    return account


def delete_profile(s: "Session", account: Account) -> None:
    record_event(
        s,
        actor=account,
        action="profile.delete",
        entity_type="Account",
        entity_id=str(account.id),
        metadata={"username": account.username},
    )
    s.delete(account)
    s.commit()
    refresh_authorization()
