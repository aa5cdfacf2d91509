import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.models import Account, Permission, Role, RolePermission
from app.portal.modules.administration.roles.service import seed_permissions

ADMIN_ROLE_TITLE = "Administrator"


def seed_only(*, app=None) -> None:
    """
    Seed permissions (from the registered views), the Administrator role and the admin account.
    Idempotent. Does NOT overwrite an existing admin account's password.
    """
    app = app or create_app()
    catalog = app.extensions["permission_catalog"]
    admin_username = app.config["ADMIN_USERNAME"]
    admin_email = app.config["ADMIN_EMAIL"]

    with session_scope(app) as s:
        added, removed = seed_permissions(s, catalog)

        role = s.query(Role).filter(Role.title == ADMIN_ROLE_TITLE).one_or_none()
        if not role:
            role = Role(title=ADMIN_ROLE_TITLE)
            s.add(role)
        granted = {rp.permission_id for rp in role.permissions}
        for p in s.query(Permission).order_by(Permission.id).all():
            if p.id not in granted:
                role.permissions.append(RolePermission(permission_id=p.id))
        s.flush()

        account = s.query(Account).filter(Account.username == admin_username).one_or_none()
        if not account:
            account = Account(
                username=admin_username,
                email=admin_email,
                passhash=generate_password_hash(app.config["ADMIN_PASSWORD"]),
                is_locked=False,
            )
            s.add(account)
        account.role_id = role.id

    app.extensions["authorization"].refresh()
    print(f"Initialized database (seed_only): {added} permission(s) added, {removed} removed.")
    print(f"Admin username: {admin_username}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
