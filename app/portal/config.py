import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    application_path: str
    logger_path: str
    logger_backup_size: int

    admin_username: str
    admin_email: str
    admin_password: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from None


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///portal.db"),
        application_path=_getenv("APPLICATION_PATH", os.getcwd()),
        logger_path=_getenv("LOGGER_PATH", "Logs"),
        logger_backup_size=_getenv_int("LOGGER_BACKUP_SIZE", 1024 * 1024),
        admin_username=_getenv("ADMIN_USERNAME", "admin"),
        admin_email=_getenv("ADMIN_EMAIL", "admin@portal.local").lower(),
        admin_password=_getenv("ADMIN_PASSWORD", "change-me"),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "APPLICATION_PATH": s.application_path,
        "LOGGER_PATH": s.logger_path,
        "LOGGER_BACKUP_SIZE": s.logger_backup_size,
        "ADMIN_USERNAME": s.admin_username,
        "ADMIN_EMAIL": s.admin_email,
        "ADMIN_PASSWORD": s.admin_password,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
    }
