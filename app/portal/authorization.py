"""
Route-based authorization.

Every view is addressed by an (area, controller, action) triple derived from its
Flask endpoint: ``administration.accounts.edit`` -> ("administration", "accounts",
"edit"), ``profile.edit`` -> ("", "profile", "edit"). Views declare what they
require with the decorators below; undecorated views require their own triple.

The catalog (endpoint -> required permission) is built once from
``app.view_functions``. The provider keeps an immutable account -> permissions
snapshot which ``refresh()`` rebuilds and swaps in with a single assignment, so
request threads read it without locking.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from flask import Blueprint, Flask, abort, current_app, g, redirect, request, url_for
from markupsafe import Markup
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.portal.models import Account, Permission, Role, RolePermission

logger = logging.getLogger(__name__)

_ANONYMOUS = "_authorization_anonymous"
_UNAUTHORIZED = "_authorization_unauthorized"
_AUTHORIZE_AS = "_authorization_as"


class AuthorizationConfigError(RuntimeError):
    pass


@dataclass(frozen=True, order=True)
class PermissionKey:
    area: str
    controller: str
    action: str

    @classmethod
    def of(cls, area: str | None, controller: str | None, action: str | None) -> "PermissionKey":
        return cls((area or "").strip().lower(), (controller or "").strip().lower(), (action or "").strip().lower())

    def __str__(self) -> str:
        return f"{self.area}/{self.controller}/{self.action}"


def split_endpoint(endpoint: str) -> PermissionKey:
    parts = endpoint.split(".")
    if len(parts) == 1:
        return PermissionKey.of("", "", parts[0])
    return PermissionKey.of(".".join(parts[:-2]), parts[-2], parts[-1])


# ---------- Declarations ----------
def allow_anonymous(fn: Callable[..., Any]) -> Callable[..., Any]:
    setattr(fn, _ANONYMOUS, True)
    return fn


def allow_unauthorized(fn: Callable[..., Any]) -> Callable[..., Any]:
    setattr(fn, _UNAUTHORIZED, True)
    return fn


def authorize_as(
    action: str, controller: str | None = None, area: str | None = None
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Require the permission of another action (defaults to the same controller/area)."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        setattr(fn, _AUTHORIZE_AS, (area, controller, action))
        return fn

    return decorator


def allow_anonymous_blueprint(bp: Blueprint) -> Blueprint:
    setattr(bp, _ANONYMOUS, True)
    return bp


# ---------- Catalog ----------
class PermissionCatalog:
    def __init__(self, required: Mapping[PermissionKey, PermissionKey | None], anonymous: frozenset[PermissionKey]):
        self._required = MappingProxyType(dict(required))
        self._anonymous = anonymous

    @classmethod
    def from_app(cls, app: Flask) -> "PermissionCatalog":
        views: dict[PermissionKey, Callable[..., Any]] = {}
        anonymous: set[PermissionKey] = set()
        for endpoint, view in app.view_functions.items():
            key = split_endpoint(endpoint)
            views[key] = view
            blueprint = app.blueprints.get(endpoint.rpartition(".")[0])
            if (
                key.action == "static"
                or getattr(view, _ANONYMOUS, False)
                or (blueprint is not None and getattr(blueprint, _ANONYMOUS, False))
            ):
                anonymous.add(key)

        def resolve(key: PermissionKey, chain: tuple[PermissionKey, ...]) -> PermissionKey | None:
            if key in chain:
                path = " -> ".join(str(k) for k in chain + (key,))
                raise AuthorizationConfigError(f"authorize_as cycle: {path}")
            view = views.get(key)
            if view is None:
                raise AuthorizationConfigError(f"authorize_as target {key} (from {chain[-1]}) is not a registered view")
            if key in anonymous or getattr(view, _UNAUTHORIZED, False):
                return None
            target = getattr(view, _AUTHORIZE_AS, None)
            if target is None:
                return key
            area, controller, action = target
            return resolve(
                PermissionKey.of(
                    key.area if area is None else area,
                    key.controller if controller is None else controller,
                    action,
                ),
                chain + (key,),
            )

        required = {key: resolve(key, ()) for key in views}
        return cls(required, frozenset(anonymous))

    def required_permission(self, area: str | None, controller: str | None, action: str | None) -> PermissionKey | None:
        return self._required.get(PermissionKey.of(area, controller, action))

    def is_anonymous(self, key: PermissionKey) -> bool:
        return key in self._anonymous

    def permissions(self) -> frozenset[PermissionKey]:
        return frozenset(p for p in self._required.values() if p is not None)

    def __contains__(self, key: PermissionKey) -> bool:
        return key in self._required

    def __len__(self) -> int:
        return len(self._required)


# ---------- Provider ----------
class AuthorizationProvider:
    def __init__(self, catalog: PermissionCatalog, session_factory: Callable[[], Session]):
        self.catalog = catalog
        self._session_factory = session_factory
        self._permissions: Mapping[int, frozenset[PermissionKey]] = MappingProxyType({})
        self._refresh_lock = threading.Lock()

    def is_authorized_for(self, account_id: int | None, area: str | None, controller: str | None, action: str | None) -> bool:
        required = self.catalog.required_permission(area, controller, action)
        if required is None:
            return True
        if account_id is None:
            return False
        return required in self._permissions.get(account_id, frozenset())

    def permissions_for(self, account_id: int | None) -> frozenset[PermissionKey]:
        if account_id is None:
            return frozenset()
        return self._permissions.get(account_id, frozenset())

    def refresh(self) -> None:
        with self._refresh_lock:
            stmt = (
                select(Account.id, Permission.area, Permission.controller, Permission.action)
                .join(Role, Account.role_id == Role.id)
                .join(RolePermission, RolePermission.role_id == Role.id)
                .join(Permission, Permission.id == RolePermission.permission_id)
                .where(Account.is_locked.is_(False))
            )
            s = self._session_factory()
            try:
                rows = s.execute(stmt).all()
            finally:
                s.close()

            grouped: dict[int, set[PermissionKey]] = defaultdict(set)
            for account_id, area, controller, action in rows:
                grouped[account_id].add(PermissionKey.of(area, controller, action))
            self._permissions = MappingProxyType({k: frozenset(v) for k, v in grouped.items()})
        logger.info("Authorization refreshed: %d account(s) with permissions", len(grouped))


def authorization_provider() -> AuthorizationProvider | None:
    return current_app.extensions.get("authorization")


def refresh_authorization() -> None:
    provider = authorization_provider()
    if provider is not None:
        provider.refresh()


def current_account_id() -> int | None:
    account = getattr(g, "current_account", None)
    return account.id if account is not None else None


# ---------- Request gate ----------
def authorization_gate():
    """
    before_request hook: anonymous endpoints pass, unauthenticated -> login,
    authenticated but missing the permission -> 403.
    """
    if request.endpoint is None:
        return None
    catalog: PermissionCatalog | None = current_app.extensions.get("permission_catalog")
    key = split_endpoint(request.endpoint)
    if catalog is not None and catalog.is_anonymous(key):
        return None

    if getattr(g, "current_account", None) is None:
        nxt = request.full_path or request.path
        # Avoid trailing '?' from full_path when there is no query string.
        if nxt.endswith("?"):
            nxt = nxt[:-1]
        return redirect(url_for("auth.login", next=nxt))

    provider = authorization_provider()
    if provider is None:
        return None
    if not provider.is_authorized_for(current_account_id(), key.area, key.controller, key.action):
        g.missing_permission = str(provider.catalog.required_permission(key.area, key.controller, key.action))
        abort(403)
    return None


# ---------- Template helper ----------
def authorize(action: str | None = None, controller: str | None = None, area: str | None = None, caller=None):
    """
    ``{% if authorize(action="create") %}`` or ``{% call authorize(action="edit") %}...{% endcall %}``.
    Unspecified parts come from the current endpoint. Renders when no provider is configured.
    """
    provider = authorization_provider()
    allowed = True
    if provider is not None:
        current = split_endpoint(request.endpoint) if request.endpoint else PermissionKey("", "", "")
        allowed = provider.is_authorized_for(
            current_account_id(),
            current.area if area is None else area,
            current.controller if controller is None else controller,
            current.action if action is None else action,
        )
    if caller is None:
        return allowed
    return caller() if allowed else Markup("")


def init_authorization(app: Flask) -> AuthorizationProvider:
    """Build the catalog from every registered view; call after all blueprints are registered."""
    from app.portal.db import session_factory

    catalog = PermissionCatalog.from_app(app)
    provider = AuthorizationProvider(catalog, session_factory(app))
    app.extensions["permission_catalog"] = catalog
    app.extensions["authorization"] = provider
    app.before_request(authorization_gate)
    app.add_template_global(authorize)
    app.logger.info("Permission catalog built: %d endpoint(s), %d permission(s)", len(catalog), len(catalog.permissions()))
    return provider
