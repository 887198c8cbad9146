"""
Tests for the application shell: config selection, logging formatters and
the probe CLI commands.
"""

import json
import logging

import pytest

from ticket_parity.config import CockroachConfig, PostgresConfig, SpannerConfig, TestingConfig, config
from ticket_parity.middleware.logging_config import JSONFormatter, ReadableFormatter


class TestConfig:
    def test_testing_uses_sqlite_file(self, app):
        assert app.config["TESTING"] is True
        if app.config["BACKEND"] == "sqlite":
            assert app.config["SQLALCHEMY_DATABASE_URI"].endswith("ticket_parity_test.db")
            assert app.config["SQLALCHEMY_ENGINE_OPTIONS"]["connect_args"]["timeout"] > 0

    @pytest.mark.parametrize("cls,env_var", [
        (PostgresConfig, "POSTGRES_URL"),
        (CockroachConfig, "COCKROACH_URL"),
        (SpannerConfig, "SPANNER_PGADAPTER_URL"),
    ])
    def test_server_backends_require_url(self, monkeypatch, cls, env_var):
        monkeypatch.delenv(env_var, raising=False)
        with pytest.raises(RuntimeError, match=env_var):
            cls()

    def test_postgres_scheme_is_rewritten(self, monkeypatch):
        monkeypatch.setenv("COCKROACH_URL", "postgres://root@localhost:26257/tickets")
        cfg = CockroachConfig()
        assert cfg.SQLALCHEMY_DATABASE_URI == "postgresql://root@localhost:26257/tickets"
        assert cfg.BACKEND == "cockroachdb"

    def test_config_names(self):
        assert set(config) >= {"testing", "development", "postgres", "cockroachdb", "spanner"}
        assert config["testing"] is TestingConfig


class TestLogging:
    def _record(self, **extra):
        record = logging.LogRecord("ticket_parity.services.concurrency", logging.INFO, __file__, 1,
                                   "Version conflict on %s", ("Ticket",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_lifts_known_extras(self):
        payload = json.loads(JSONFormatter().format(
            self._record(aggregate="Ticket", aggregate_id=7, version=3, event_type="conflict", ignored="x")
        ))
        assert payload["message"] == "Version conflict on Ticket"
        assert (payload["aggregate"], payload["aggregate_id"], payload["version"]) == ("Ticket", 7, 3)
        assert "ignored" not in payload

    def test_readable_formatter_tags_aggregate(self):
        line = ReadableFormatter().format(self._record(aggregate="Ticket", aggregate_id=7))
        assert "[Ticket#7]" in line
        assert "Version conflict on Ticket" in line


class TestCli:
    def test_probe_features(self, app):
        result = app.test_cli_runner().invoke(args=["probe-features"])
        assert result.exit_code == 0, result.output
        report = json.loads(result.output)
        assert report["features"]["window_functions"]["status"] == "SUPPORTED"

    def test_probe_table_without_information_schema(self, app):
        if app.config["BACKEND"] != "sqlite":
            pytest.skip("SQLite-specific failure mode")
        result = app.test_cli_runner().invoke(args=["probe-table", "tickets"])
        assert result.exit_code != 0
        assert "failed in columns" in result.output
