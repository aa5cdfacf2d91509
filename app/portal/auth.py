from __future__ import annotations

import threading
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.portal.audit import record_event
from app.portal.authorization import allow_anonymous
from app.portal.db import db_session
from app.portal.models import Account
from app.portal.modules.administration.accounts import service as account_service
from app.portal.modules.administration.accounts.validators import validate_register
from app.portal.security import is_safe_redirect

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_login_attempts_lock = threading.Lock()
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    cutoff = datetime.utcnow() - timedelta(seconds=_LOGIN_RATE_WINDOW)
    with _login_attempts_lock:
        _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
        return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    with _login_attempts_lock:
        _login_attempts[ip].append(datetime.utcnow())


def _clear_attempts(ip: str) -> None:
    with _login_attempts_lock:
        _login_attempts.pop(ip, None)


def load_current_account() -> None:
    """
    Loads g.current_account from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    Locked or deleted accounts lose their session here.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_account = None
    if request.endpoint == "static":
        return

    account_id = session.get("account_id")
    if not account_id:
        return

    s = db_session()
    if not account_service.is_active(s, int(account_id)):
        session.pop("account_id", None)
        return
    g.current_account = s.get(Account, int(account_id))


def _redirect_next(nxt: str):
    if is_safe_redirect(nxt):
        return redirect(nxt)
    return redirect(url_for("home.index"))


@bp.get("/login")
@allow_anonymous
def login():
    if getattr(g, "current_account", None) is not None:
        return _redirect_next((request.args.get("next") or "").strip())
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
@allow_anonymous
def login_post():
    username = (request.form.get("username") or "").strip()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login"))

    _record_attempt(ip)

    s = db_session()
    account = account_service.authenticate(s, username, password)
    if account is None:
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="Account",
            entity_id=username.lower(),
            reason="Invalid credentials or locked account",
        )
        s.commit()
        current_app.logger.warning("Failed login for '%s' from %s", username, ip)
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login", next=nxt or None))

    session.clear()
    session["account_id"] = account.id
    _clear_attempts(ip)
    record_event(s, actor=account, action="auth.login", entity_type="Account", entity_id=str(account.id))
    s.commit()
    return _redirect_next(nxt)


@bp.get("/logout")
@allow_anonymous
def logout():
    account = getattr(g, "current_account", None)
    if account:
        s = db_session()
        record_event(s, actor=account, action="auth.logout", entity_type="Account", entity_id=str(account.id))
        s.commit()
    language = session.get("language")
    session.clear()
    if language:
        session["language"] = language
    return redirect(url_for("auth.login"))


@bp.get("/register")
@allow_anonymous
def register():
    if getattr(g, "current_account", None) is not None:
        return redirect(url_for("home.index"))
    return render_template("auth/register.html", form={})


@bp.post("/register")
@allow_anonymous
def register_post():
    s = db_session()
    payload = {
        "username": request.form.get("username"),
        "email": request.form.get("email"),
        "password": request.form.get("password"),
        "password_confirm": request.form.get("password_confirm"),
    }
    errors = validate_register(s, payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("auth/register.html", form=payload), 400

    account_service.register(s, payload)
    flash("Account registered. You can log in now.", "success")
    return redirect(url_for("auth.login"))
