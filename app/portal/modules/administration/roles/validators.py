from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func

from app.portal.models import Permission, Role

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def validate_role_payload(s: "Session", payload: dict, role: Role | None = None) -> list[str]:
    """Validate role creation/update payload. Returns list of errors."""
    errors = []
    title = (payload.get("title") or "").strip()
    if not title:
        errors.append("Title is required.")
    elif len(title) > 128:
        errors.append("Title must be at most 128 characters.")
    else:
        q = s.query(Role.id).filter(func.lower(Role.title) == title.lower())
        if role is not None:
            q = q.filter(Role.id != role.id)
        if q.first() is not None:
            errors.append("A role with this title already exists.")

    raw_ids = [str(p).strip() for p in payload.get("permission_ids") or [] if str(p).strip()]
    if any(not p.isdigit() for p in raw_ids):
        errors.append("Unknown permission selected.")
    elif raw_ids:
        ids = {int(p) for p in raw_ids}
        known = {pid for (pid,) in s.query(Permission.id).filter(Permission.id.in_(ids))}
        if ids - known:
            errors.append("Unknown permission selected.")
    return errors
