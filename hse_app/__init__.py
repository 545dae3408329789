"""
HSE Corrective Action Platform
Flask Application Factory.

Usage:
    from hse_app import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")
"""

import atexit
import importlib
import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from hse_app.config import config, validate_config
from hse_app.middleware.logging_config import configure_logging
from hse_app.middleware.rate_limiter import init_rate_limits
from hse_app.models import db
from hse_app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

migrate = Migrate()
# No global limit: limits are attached per blueprint by init_rate_limits
limiter = Limiter(key_func=get_remote_address, default_limits=[])


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """SQLite ignores foreign keys unless asked per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """
    Build the application for *config_name* (development / testing /
    production; defaults to APP_ENV).

    Raises:
        RuntimeError: the configuration fails ``validate_config``.
    """
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])
    validate_config(app.config)
    configure_logging(app)

    _init_extensions(app)
    _init_database(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    init_rate_limits(app, limiter)
    _init_scheduler(app)

    logger.info("HSE Corrective Action Platform started (env=%s)", config_name)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_database(app):
    from hse_app.models import audit, corrective_action, notification, scheduling  # noqa: F401

    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()


def _register_blueprints(app):
    from hse_app.blueprints.corrective_action_bp import corrective_action_bp
    from hse_app.blueprints.health_bp import health_bp
    from hse_app.blueprints.notification_bp import notification_bp

    app.register_blueprint(corrective_action_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)


def _register_error_handlers(app):
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, f"{request.method} not allowed on {request.path}")

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests",
                         details={"limit": str(e.description)})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error on %s", request.path, exc_info=True,
                     extra={"endpoint": request.endpoint})
        return api_error(E.INTERNAL, "Internal server error")


def _init_scheduler(app):
    # Importing the jobs module registers its jobs
    importlib.import_module("hse_app.services.scheduled_jobs")
    from hse_app.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)
    if app.config.get("SCHEDULER_ENABLED"):
        SchedulerService.start()
        atexit.register(SchedulerService.stop)
