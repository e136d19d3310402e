"""
CivicWorks Workflow Engine
Flask Application Factory.

Usage:
    from civicworks import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from civicworks.config import config
from civicworks.core.exceptions import DomainError
from civicworks.middleware.jwt_auth import init_jwt_middleware
from civicworks.middleware.logging_config import configure_logging
from civicworks.middleware.rate_limiter import init_rate_limits
from civicworks.middleware.timing import init_request_timing
from civicworks.models import db
from civicworks.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _serialize_sqlite_writers(engine):
    """
    Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first DML statement, so two requests can
    both read a row and then race to upgrade their locks. With the driver's
    own transaction handling switched off and BEGIN IMMEDIATE emitted by
    SQLAlchemy, writers queue on the busy timeout instead.
    """

    @_sa_event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @_sa_event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # limits are set per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides: Optional mapping applied on top of the config class
                   (tests use it to point at a file-backed database).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    if overrides:
        app.config.update(overrides)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    if app.config.get("SQLITE_SERIALIZE_WRITES"):
        with app.app_context():
            if db.engine.dialect.name == "sqlite":
                _serialize_sqlite_writers(db.engine)

    # ── Request timing middleware (assigns g.request_id) ─────────────────
    init_request_timing(app)

    # ── JWT auth middleware (sets g.actor_id / g.actor_role) ─────────────
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from civicworks.models import audit as _audit_models            # noqa: F401
    from civicworks.models import command as _command_models        # noqa: F401
    from civicworks.models import incident as _incident_models      # noqa: F401
    from civicworks.models import inventory as _inventory_models    # noqa: F401
    from civicworks.models import maintenance as _maintenance_models  # noqa: F401
    from civicworks.models import material as _material_models      # noqa: F401
    from civicworks.models import purchase as _purchase_models      # noqa: F401

    # ── Signal receivers (connected on import) ───────────────────────────
    from civicworks.services import maintenance_service as _maintenance_service  # noqa: F401
    from civicworks.services import material_fulfillment as _material_fulfillment  # noqa: F401

    # ── Auto-create tables (development convenience) ─────────────────────
    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
                os.makedirs(app.instance_path, exist_ok=True)
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from civicworks.blueprints.health_bp import health_bp
    from civicworks.blueprints.incident_bp import incident_bp
    from civicworks.blueprints.inventory_bp import inventory_bp
    from civicworks.blueprints.maintenance_bp import maintenance_bp
    from civicworks.blueprints.material_request_bp import material_request_bp
    from civicworks.blueprints.purchase_request_bp import purchase_request_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(incident_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(maintenance_bp)
    app.register_blueprint(material_request_bp)
    app.register_blueprint(purchase_request_bp)

    init_rate_limits(app, limiter)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(DomainError)
    def domain_error(err):
        if err.http_status >= 500:
            logger.error("Unhandled domain error on %s: %s", request.path, err)
        return api_error(err.code, str(err), status=err.http_status, details=err.details)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.METHOD_NOT_ALLOWED, "Method not allowed")

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, f"Rate limit exceeded: {e.description}")

    @app.errorhandler(500)
    def server_error(e):
        logger.exception("500 error on %s", request.path)
        return api_error(E.INTERNAL, "Internal server error")

    return app
