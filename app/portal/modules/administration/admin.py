from flask import Blueprint

from app.portal.modules.administration.accounts.admin import bp as accounts_bp
from app.portal.modules.administration.audit.admin import bp as audit_bp
from app.portal.modules.administration.roles.admin import bp as roles_bp

bp = Blueprint("administration", __name__)
bp.register_blueprint(accounts_bp, url_prefix="/accounts")
bp.register_blueprint(roles_bp, url_prefix="/roles")
bp.register_blueprint(audit_bp, url_prefix="/audit")
