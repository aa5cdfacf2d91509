from flask import Blueprint, render_template

from app.portal.authorization import allow_anonymous, allow_unauthorized

bp = Blueprint("home", __name__)


@bp.get("/")
@allow_unauthorized
def index():
    return render_template("home/index.html")


@bp.get("/health")
@allow_anonymous
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
@allow_anonymous
def healthz():
    """
    Fast health check for load balancers. No DB access, minimal overhead.
    """
    return "ok", 200
