"""
ticket-parity
Flask application factory.

Usage:
    from ticket_parity import create_app
    app = create_app()              # APP_ENV, or "development"
    app = create_app("cockroachdb") # explicit backend config
"""

import json
import logging
import os

import click
from flask import Flask
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from ticket_parity.config import config
from ticket_parity.middleware.logging_config import configure_logging
from ticket_parity.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "postgres",
                     "cockroachdb", "spanner". Defaults to the APP_ENV env
                     var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)

    # ── Import all models so create_all sees every table ─────────────────
    from ticket_parity.models import associations as _associations_models  # noqa: F401
    from ticket_parity.models import comment as _comment_models             # noqa: F401
    from ticket_parity.models import project as _project_models             # noqa: F401
    from ticket_parity.models import sprint as _sprint_models               # noqa: F401
    from ticket_parity.models import ticket as _ticket_models               # noqa: F401
    from ticket_parity.models import user as _user_models                   # noqa: F401
    from ticket_parity.models import work_log as _work_log_models           # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config.get("AUTO_CREATE_TABLES", True):
        with app.app_context():
            db.create_all()
            app.logger.debug("db.create_all() completed on %s", app.config["BACKEND"])

    _register_cli(app)
    return app


def _register_cli(app):
    @app.cli.command("probe-table")
    @click.argument("table_name")
    @click.option("--ddl", is_flag=True, help="Also print the reconstructed CREATE TABLE.")
    @click.option("--schema", default="public", show_default=True, help="Schema the table lives in.")
    def probe_table_cmd(table_name, ddl, schema):
        """Describe TABLE_NAME from information_schema."""
        from ticket_parity.core.exceptions import ProbeError
        from ticket_parity.services.dialect_probe import DialectProbe

        with db.engine.connect() as conn:
            probe = DialectProbe(conn, schema=schema)
            try:
                description = probe.describe_table(table_name)
            except ProbeError as exc:
                raise click.ClickException(str(exc)) from exc
        click.echo(json.dumps(description.to_dict(), indent=2, default=str))
        if ddl:
            click.echo(DialectProbe.reconstruct_create_table(description))

    @app.cli.command("probe-features")
    def probe_features_cmd():
        """Run every canonical feature query against the configured backend."""
        from ticket_parity.services.dialect_probe import DialectProbe

        with db.engine.connect() as conn:
            report = DialectProbe(conn).detect_all()
        click.echo(json.dumps(report.to_dict(), indent=2))
