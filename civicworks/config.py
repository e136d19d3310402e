"""
CivicWorks Workflow Engine: configuration classes.

Selected in the app factory by name (``APP_ENV``):

    app.config.from_object(config["production"]())

Engine settings:
    LEDGER_MAX_RETRIES        optimistic retries for issue-what-is-available
    LOW_STOCK_WARNING_RATIO   WARNING band upper bound, × minimum_threshold
    SQLITE_SERIALIZE_WRITES   BEGIN IMMEDIATE on file-backed SQLite
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'civicworks_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random per process; tokens do not survive a dev restart
_DEV_SECRET = secrets.token_hex(32)


def _database_url(env_var: str = "DATABASE_URL") -> str | None:
    raw = os.getenv(env_var, "")
    # SQLAlchemy 2.x only accepts the postgresql:// scheme
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}
    AUTO_CREATE_TABLES = True
    SQLITE_SERIALIZE_WRITES = True

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Flask-Limiter storage is read from REDIS_URL when the limiter is built
    RATELIMIT_COMMANDS = os.getenv("RATELIMIT_COMMANDS", "120/minute")
    RATELIMIT_INVENTORY = os.getenv("RATELIMIT_INVENTORY", "300/minute")

    LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "5"))
    LOW_STOCK_WARNING_RATIO = float(os.getenv("LOW_STOCK_WARNING_RATIO", "1.5"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "civicworks-test-secret-key-0123456789abcdef"
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    AUTO_CREATE_TABLES = False
    RATELIMIT_ENABLED = False
    # In-memory SQLite shares one connection between test and request sessions
    SQLITE_SERIALIZE_WRITES = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    AUTO_CREATE_TABLES = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
