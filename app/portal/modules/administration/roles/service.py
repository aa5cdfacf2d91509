from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from app.portal.audit import record_event
from app.portal.authorization import PermissionCatalog, PermissionKey, refresh_authorization
from app.portal.models import Account, Permission, Role, RolePermission

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def get_views(s: "Session") -> list[Role]:
    return s.query(Role).order_by(Role.title.asc()).all()


def get_permission_tree(s: "Session") -> dict[str, dict[str, list[Permission]]]:
    """area -> controller -> permissions, sorted, for rendering the role form."""
    tree: dict[str, dict[str, list[Permission]]] = defaultdict(lambda: defaultdict(list))
    q = s.query(Permission).order_by(Permission.area, Permission.controller, Permission.action)
    for p in q.all():
        tree[p.area][p.controller].append(p)
    return {area: dict(controllers) for area, controllers in tree.items()}


def _permission_ids(raw_ids) -> set[int]:
    return {int(r) for r in (raw_ids or []) if str(r).strip()}


def _set_permissions(s: "Session", role: Role, permission_ids: set[int]) -> None:
    known = {p.id for p in s.query(Permission).filter(Permission.id.in_(permission_ids)).all()} if permission_ids else set()
    missing = permission_ids - known
    if missing:
        raise ValueError(f"Unknown permission id(s): {sorted(missing)}")

    current = {rp.permission_id: rp for rp in role.permissions}
    for pid in set(current) - permission_ids:
        role.permissions.remove(current[pid])
    for pid in sorted(permission_ids - set(current)):
        role.permissions.append(RolePermission(permission_id=pid))


def _permission_keys(s: "Session", role: Role) -> list[str]:
    s.flush()
    ids = [rp.permission_id for rp in role.permissions]
    if not ids:
        return []
    return sorted(p.key for p in s.query(Permission).filter(Permission.id.in_(ids)).all())


def create_role(s: "Session", payload: dict, actor: Account) -> Role:
    role = Role(title=(payload.get("title") or "").strip())
    s.add(role)
    _set_permissions(s, role, _permission_ids(payload.get("permission_ids")))
    s.flush()
    record_event(
        s,
        actor=actor,
        action="role.create",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"title": role.title, "permissions": _permission_keys(s, role)},
    )
    s.commit()
    refresh_authorization()
    return role


def edit_role(s: "Session", role: Role, payload: dict, actor: Account) -> Role:
    before = {"title": role.title, "permissions": _permission_keys(s, role)}
    role.title = (payload.get("title") or "").strip() or role.title
    _set_permissions(s, role, _permission_ids(payload.get("permission_ids")))
    after = {"title": role.title, "permissions": _permission_keys(s, role)}

    record_event(
        s,
        actor=actor,
        action="role.edit",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"before": before, "after": after},
    )
    s.commit()
    refresh_authorization()
    return role


def delete_role(s: "Session", role: Role, actor: Account) -> None:
    unassigned = s.query(Account).filter(Account.role_id == role.id).all()
    for account in unassigned:
        account.role_id = None
    record_event(
        s,
        actor=actor,
        action="role.delete",
        entity_type="Role",
        entity_id=str(role.id),
        metadata={"title": role.title, "unassigned_accounts": [a.username for a in unassigned]},
    )
    s.delete(role)
    s.commit()
    for account in unassigned:
        s.expire(account, ["role"])
    refresh_authorization()


def seed_permissions(s: "Session", catalog: PermissionCatalog) -> tuple[int, int]:
    """
    Sync the permissions table with the endpoints that require one.
    Returns (added, removed). Idempotent.
    """
    wanted = catalog.permissions()
    existing = {PermissionKey.of(p.area, p.controller, p.action): p for p in s.query(Permission).all()}

    added = 0
    for key in sorted(wanted - set(existing)):
        s.add(Permission(area=key.area, controller=key.controller, action=key.action))
        added += 1

    removed = 0
    for key in set(existing) - wanted:
        s.delete(existing[key])
        removed += 1

    s.flush()
    if added or removed:
        logger.info("Permissions seeded: %d added, %d removed", added, removed)
    return added, removed
