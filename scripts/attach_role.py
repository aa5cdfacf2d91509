#!/usr/bin/env python3
"""Attach a role to an account (idempotent).

Usage:
  python scripts/attach_role.py --username jdoe [--role Administrator]
"""

import sys
import os
import argparse
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, func
from sqlalchemy.orm import Session

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import Account, Role


@contextmanager
def _account_session(db_url: str):
    """One committed session on a throwaway engine, outside the web app."""
    engine = create_engine(db_url, pool_pre_ping=True)
    try:
        with Session(engine, expire_on_commit=False) as s, s.begin():
            yield s
    finally:
        engine.dispose()


def attach_role(db_url: str, username: str, role_title: str) -> bool:
    with _account_session(db_url) as s:
        account = s.query(Account).filter(func.lower(Account.username) == username.lower()).one_or_none()
        if not account:
            print(f"Account not found: {username}")
            return False
        role = s.query(Role).filter(func.lower(Role.title) == role_title.lower()).one_or_none()
        if not role:
            print(f"Role not found: {role_title}. Run python scripts/init_db.py first.")
            return False
        if account.role_id == role.id:
            print(f"Account already has role {role.title}: {account.username}")
            return True
        account.role_id = role.id
    print(f"Role {role.title} attached to {account.username}")
    # Running web workers pick the change up on their next refresh (any role/account edit) or restart.
    return True


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--username", required=True, help="Account username")
    parser.add_argument("--role", default="Administrator", help="Role title (default: Administrator)")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()
    if not attach_role(db_url, args.username, args.role):
        sys.exit(1)


if __name__ == "__main__":
    main()
