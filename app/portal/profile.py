from flask import Blueprint, flash, g, redirect, render_template, request, session, url_for

from app.portal.authorization import allow_unauthorized, authorization_provider
from app.portal.db import db_session
from app.portal.modules.administration.accounts import service as account_service
from app.portal.modules.administration.accounts.validators import validate_profile, validate_profile_delete

bp = Blueprint("profile", __name__)


@bp.get("/")
@allow_unauthorized
def edit():
    account = g.current_account
    provider = authorization_provider()
    permissions = sorted(str(k) for k in provider.permissions_for(account.id)) if provider else []
    return render_template("profile/edit.html", account=account, permissions=permissions)


@bp.post("/")
@allow_unauthorized
def edit_post():
    s = db_session()
    account = g.current_account
    payload = {
        "username": request.form.get("username"),
        "email": request.form.get("email"),
        "password": request.form.get("password"),
        "new_password": request.form.get("new_password"),
        "new_password_confirm": request.form.get("new_password_confirm"),
    }
    errors = validate_profile(s, account, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("profile.edit"))

    account_service.edit_profile(s, account, payload)
    flash("Profile updated.", "success")
    return redirect(url_for("profile.edit"))


@bp.get("/delete")
@allow_unauthorized
def delete():
    return render_template("profile/delete.html", account=g.current_account)


@bp.post("/delete")
@allow_unauthorized
def delete_post():
    s = db_session()
    account = g.current_account
    errors = validate_profile_delete(account, {"password": request.form.get("password")})
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("profile.delete"))

    account_service.delete_profile(s, account)
    session.clear()
    flash("Your account has been deleted.", "success")
    return redirect(url_for("auth.login"))
