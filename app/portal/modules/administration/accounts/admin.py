from __future__ import annotations

from flask import Blueprint, abort, flash, g, redirect, render_template, request, url_for

from app.portal.db import db_session
from app.portal.authorization import authorize_as
from app.portal.models import Account, Role
from app.portal.modules.administration.accounts import service, validators

bp = Blueprint("accounts", __name__)


def _current_account() -> Account:
    a = getattr(g, "current_account", None)
    if not a:
        raise RuntimeError("No current account")
    return a


def _get_or_404(account_id: int) -> Account:
    account = db_session().get(Account, account_id)
    if not account:
        abort(404)
    return account


def _roles() -> list[Role]:
    return db_session().query(Role).order_by(Role.title.asc()).all()


def _form_payload() -> dict:
    return {
        "username": request.form.get("username"),
        "email": request.form.get("email"),
        "password": request.form.get("password"),
        "password_confirm": request.form.get("password_confirm"),
        "role_id": request.form.get("role_id"),
        "is_locked": request.form.get("is_locked") == "1",
    }


# ---------- List ----------
@bp.get("/")
def index():
    accounts = service.get_views(db_session())
    return render_template("administration/accounts/index.html", accounts=accounts)


# ---------- Create ----------
@bp.get("/create")
def create():
    return render_template("administration/accounts/create.html", roles=_roles(), form={})


@bp.post("/create")
@authorize_as("create")
def create_post():
    s = db_session()
    payload = _form_payload()
    errors = validators.validate_create(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("administration/accounts/create.html", roles=_roles(), form=payload), 400

    account = service.create_account(s, payload, _current_account())
    flash(f"Account created for {account.username}.", "success")
    return redirect(url_for(".details", account_id=account.id))


# ---------- Details ----------
@bp.get("/<int:account_id>")
def details(account_id: int):
    return render_template("administration/accounts/details.html", account=_get_or_404(account_id))


# ---------- Edit ----------
@bp.get("/<int:account_id>/edit")
def edit(account_id: int):
    return render_template("administration/accounts/edit.html", account=_get_or_404(account_id), roles=_roles())


@bp.post("/<int:account_id>/edit")
@authorize_as("edit")
def edit_post(account_id: int):
    s = db_session()
    account = _get_or_404(account_id)
    if account.id == _current_account().id:
        flash("You cannot modify your own account from this page.", "danger")
        return redirect(url_for(".details", account_id=account_id))

    payload = _form_payload()
    errors = validators.validate_edit(s, account, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("administration/accounts/edit.html", account=account, roles=_roles()), 400

    service.edit_account(s, account, payload, _current_account())
    flash(f"Account updated for {account.username}.", "success")
    return redirect(url_for(".details", account_id=account_id))


# ---------- Delete ----------
@bp.post("/<int:account_id>/delete")
def delete(account_id: int):
    s = db_session()
    account = _get_or_404(account_id)
    if account.id == _current_account().id:
        flash("Use the profile page to delete your own account.", "danger")
        return redirect(url_for(".details", account_id=account_id))

    service.delete_account(s, account, _current_account())
    flash(f"Account {account.username} deleted.", "success")
    return redirect(url_for(".index"))
