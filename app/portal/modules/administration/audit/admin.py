from datetime import date, datetime, time, timedelta

from flask import Blueprint, flash, render_template, request

from app.portal.db import db_session
from app.portal.models import AuditEvent

bp = Blueprint("audit", __name__)

MAX_EVENTS = 200


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


@bp.get("/")
def index():
    """
    Audit trail (last 200 events) with simple filters:
    - action (contains)
    - username (contains)
    - date range (YYYY-MM-DD, inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    username = (request.args.get("username") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if username:
        q = q.filter(AuditEvent.actor_username.ilike(f"%{username}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(MAX_EVENTS).all()
    return render_template(
        "administration/audit/index.html",
        events=events,
        action=action,
        username=username,
        date_from=date_from,
        date_to=date_to,
    )
