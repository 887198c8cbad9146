"""
ticket-parity
Configuration classes for the Flask app factory, one per target backend.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import tempfile

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'ticket_parity_dev.db')}"
# File-backed so threads in race tests share one database
_SQLITE_TEST = f"sqlite:///{os.path.join(tempfile.gettempdir(), 'ticket_parity_test.db')}"


def _db_url(env_var: str) -> str | None:
    # Heroku-style postgres:// is rejected by SQLAlchemy 2.0
    raw = os.getenv(env_var, "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    """Base configuration shared across all backends."""

    DEBUG = False
    TESTING = False
    BACKEND = "sqlite"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # Seconds a SQLite writer waits on the write lock before "database is locked"
    SQLITE_BUSY_TIMEOUT = 30


class DevelopmentConfig(Config):
    """Local development against SQLite unless DATABASE_URL says otherwise."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url("DATABASE_URL") or _SQLITE_DEV
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "connect_args": {"timeout": Config.SQLITE_BUSY_TIMEOUT, "check_same_thread": False},
    } if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else Config.SQLALCHEMY_ENGINE_OPTIONS


class TestingConfig(Config):
    """Test suite configuration; TEST_DATABASE_URL points the suite at a real server."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = _db_url("TEST_DATABASE_URL") or _SQLITE_TEST
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": 10,
            "max_overflow": 10,
            "pool_timeout": 30,
            "connect_args": {"timeout": Config.SQLITE_BUSY_TIMEOUT, "check_same_thread": False},
        }
    else:
        BACKEND = "postgresql"


class _ServerConfig(Config):
    """A PostgreSQL-wire backend whose URL must come from the environment."""

    URL_ENV = ""

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        self.SQLALCHEMY_DATABASE_URI = _db_url(self.URL_ENV)
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError(f"{self.URL_ENV} environment variable is required for {self.BACKEND}")


class PostgresConfig(_ServerConfig):
    BACKEND = "postgresql"
    URL_ENV = "POSTGRES_URL"

    SQLALCHEMY_ENGINE_OPTIONS = {
        **_ServerConfig.SQLALCHEMY_ENGINE_OPTIONS,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }


class CockroachConfig(_ServerConfig):
    """CockroachDB over its PostgreSQL wire protocol (psycopg2)."""

    BACKEND = "cockroachdb"
    URL_ENV = "COCKROACH_URL"


class SpannerConfig(_ServerConfig):
    """Cloud Spanner through PGAdapter, which speaks the PostgreSQL protocol."""

    BACKEND = "spanner"
    URL_ENV = "SPANNER_PGADAPTER_URL"


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "postgres": PostgresConfig,
    "cockroachdb": CockroachConfig,
    "spanner": SpannerConfig,
    "default": DevelopmentConfig,
}
