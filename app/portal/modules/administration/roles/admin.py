from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.portal.db import db_session
from app.portal.authorization import authorize_as
from app.portal.models import Account, Role
from app.portal.modules.administration.roles import service
from app.portal.modules.administration.roles.validators import validate_role_payload

bp = Blueprint("roles", __name__)


def _current_account() -> Account:
    a = getattr(g, "current_account", None)
    if not a:
        raise RuntimeError("No current account")
    return a


def _get_or_404(role_id: int) -> Role:
    role = db_session().get(Role, role_id)
    if not role:
        abort(404)
    return role


def _form_payload() -> dict:
    return {
        "title": request.form.get("title"),
        "permission_ids": request.form.getlist("permission_ids"),
    }


def _render_form(template: str, role: Role | None, payload: dict | None = None, status: int = 200):
    s = db_session()
    if payload is not None:
        selected = {int(p) for p in payload["permission_ids"] if str(p).strip().isdigit()}
    else:
        selected = {rp.permission_id for rp in role.permissions} if role else set()
    return (
        render_template(
            template,
            role=role,
            title=(payload or {}).get("title") or (role.title if role else ""),
            tree=service.get_permission_tree(s),
            selected=selected,
        ),
        status,
    )


# ---------- List ----------
@bp.get("/")
def index():
    return render_template("administration/roles/index.html", roles=service.get_views(db_session()))


# ---------- Create ----------
@bp.get("/create")
def create():
    return _render_form("administration/roles/create.html", None)


@bp.post("/create")
@authorize_as("create")
def create_post():
    s = db_session()
    payload = _form_payload()
    errors = validate_role_payload(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form("administration/roles/create.html", None, payload, 400)

    role = service.create_role(s, payload, _current_account())
    flash(f"Role {role.title} created.", "success")
    return redirect(url_for(".details", role_id=role.id))


# ---------- Details ----------
@bp.get("/<int:role_id>")
def details(role_id: int):
    role = _get_or_404(role_id)
    return render_template(
        "administration/roles/details.html",
        role=role,
        permission_keys=sorted(rp.permission.key for rp in role.permissions),
    )


# ---------- Edit ----------
@bp.get("/<int:role_id>/edit")
def edit(role_id: int):
    return _render_form("administration/roles/edit.html", _get_or_404(role_id))


@bp.post("/<int:role_id>/edit")
@authorize_as("edit")
def edit_post(role_id: int):
    s = db_session()
    role = _get_or_404(role_id)
    payload = _form_payload()
    errors = validate_role_payload(s, payload, role)
    if errors:
        for e in errors:
            flash(e, "danger")
        return _render_form("administration/roles/edit.html", role, payload, 400)

    service.edit_role(s, role, payload, _current_account())
    flash(f"Role {role.title} updated.", "success")
    return redirect(url_for(".details", role_id=role_id))


# ---------- Delete ----------
@bp.get("/<int:role_id>/delete")
def delete(role_id: int):
    return render_template("administration/roles/delete.html", role=_get_or_404(role_id))


@bp.post("/<int:role_id>/delete")
@authorize_as("delete")
def delete_post(role_id: int):
    s = db_session()
    role = _get_or_404(role_id)
    title = role.title
    service.delete_role(s, role, _current_account())
    flash(f"Role {title} deleted.", "success")
    return redirect(url_for(".index"))
