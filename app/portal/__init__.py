import logging
import os
from datetime import timedelta

from flask import Flask, g, render_template, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.portal.config import load_config
from app.portal.db import init_db, teardown_db_session
from app.portal.logs import configure_logging, log_exception
from app.portal.routes import bp as home_bp
from app.portal.auth import bp as auth_bp, load_current_account
from app.portal.profile import bp as profile_bp
from app.portal.modules.administration.admin import bp as administration_bp
from app.portal.authorization import init_authorization
from app.portal.globalization import init_globalization
from app.portal.sitemap import init_sitemap

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    configure_logging(app)
    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    from app.portal.security import SAFE_METHODS, ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d %H:%M") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _csrf_guard():
        if request.endpoint in (None, "static", "home.health", "home.healthz"):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method not in SAFE_METHODS:
            # Login/register/logout run before a session exists.
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    app.before_request(load_current_account)
    app.teardown_appcontext(teardown_db_session)

    init_globalization(app)
    app.register_blueprint(home_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(profile_bp, url_prefix="/profile")
    app.register_blueprint(administration_bp, url_prefix="/administration")

    # Catalog is built from the registered views, so every blueprint must be in place first.
    provider = init_authorization(app)
    init_sitemap(app)

    if sa_inspect(app.extensions["sqlalchemy_engine"]).has_table("accounts"):
        provider.refresh()
    else:
        app.logger.warning("Database schema missing; run `alembic upgrade head` (authorization cache left empty).")

    @app.errorhandler(400)
    def _err_400(e):  # type: ignore[no-redef]
        return render_template("errors/400.html", message=getattr(e, "description", None)), 400

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        log_exception(app.logger, getattr(e, "original_exception", None) or e)
        return render_template("errors/500.html", request_id=getattr(g, "request_id", None)), 500

    logger.info("create_app() complete; app ready to serve")
    return app
