"""
HSE Corrective Action Platform
Configuration classes for the app factory.

Environment is picked with APP_ENV (development / testing / production);
every setting below can be overridden by an environment variable of the
same name. ``validate_config`` runs on the loaded config before any
extension is initialised.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'hse_actions_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def _env_bool(name, default):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_days(name, default):
    raw = os.getenv(name, default)
    return tuple(int(part) for part in raw.split(",") if part.strip())


def _database_url(var, fallback=None):
    # SQLAlchemy 2 only accepts the postgresql:// scheme
    url = os.getenv(var, "")
    return url.replace("postgres://", "postgresql://", 1) if url else fallback


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    RATELIMIT_WRITE_LIMIT = os.getenv("RATELIMIT_WRITE_LIMIT", "60/minute")
    RATELIMIT_READ_LIMIT = os.getenv("RATELIMIT_READ_LIMIT", "200/minute")

    # Status lifecycle
    COMPLETED_LATE_IS_OVERDUE = _env_bool("COMPLETED_LATE_IS_OVERDUE", "false")

    # Background jobs
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", "true")
    SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))
    SWEEP_PAGE_SIZE = int(os.getenv("SWEEP_PAGE_SIZE", "100"))
    DEADLINE_REMINDER_DAYS = _env_days("DEADLINE_REMINDER_DAYS", "1,3")
    DEADLINE_REMINDER_INTERVAL_SECONDS = int(
        os.getenv("DEADLINE_REMINDER_INTERVAL_SECONDS", "86400"))


class DevelopmentConfig(Config):
    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL", _SQLITE_DEV)


class TestingConfig(Config):
    TESTING = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING")
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    RATELIMIT_ENABLED = False
    # Sweeps and reminders are driven explicitly by the tests
    SCHEDULER_ENABLED = False
    COMPLETED_LATE_IS_OVERDUE = False
    SWEEP_PAGE_SIZE = 100
    DEADLINE_REMINDER_DAYS = (1, 3)


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL")
    # Must be set explicitly in production
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }


def validate_config(cfg) -> None:
    """Raise RuntimeError for settings the app cannot run with."""
    errors = []
    page_size = int(cfg.get("SWEEP_PAGE_SIZE", 0))
    if page_size < 1:
        errors.append(f"SWEEP_PAGE_SIZE must be >= 1, got {page_size}")
    interval = int(cfg.get("SWEEP_INTERVAL_SECONDS", 0))
    if interval <= 0:
        errors.append(f"SWEEP_INTERVAL_SECONDS must be > 0, got {interval}")
    days = cfg.get("DEADLINE_REMINDER_DAYS", (1, 3))
    if any(d < 1 for d in days):
        errors.append(f"DEADLINE_REMINDER_DAYS must be positive, got {list(days)}")
    if not cfg.get("TESTING") and not cfg.get("DEBUG"):
        if not cfg.get("SQLALCHEMY_DATABASE_URI"):
            errors.append("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            errors.append("SECRET_KEY environment variable must be set in production")
    if errors:
        raise RuntimeError("; ".join(errors))


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
