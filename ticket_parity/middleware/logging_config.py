"""
Structured logging configuration.

- Development / testing: human-readable colored format
- Server backends (postgres, cockroachdb, spanner): JSON, one object per line
- Log level: controlled via LOG_LEVEL env variable

Services attach context through ``extra=``; the JSON formatter lifts the
known keys (backend, table, feature, aggregate, aggregate_id, version,
event_type) into the log object.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

EXTRA_KEYS = (
    "backend",
    "table",
    "feature",
    "aggregate",
    "aggregate_id",
    "version",
    "event_type",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        aggregate = getattr(record, "aggregate", None)
        tag = ""
        if aggregate is not None:
            tag = f" [{aggregate}#{getattr(record, 'aggregate_id', '?')}]"
        elif getattr(record, "feature", None) is not None:
            tag = f" [{record.feature}]"
        msg = record.getMessage()
        base = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}{tag}: {msg}"
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def configure_logging(app):
    """
    Set up logging for the Flask app.

    Reads LOG_LEVEL from env (default: DEBUG in development, WARNING under
    test, INFO against server backends).
    """
    is_testing = app.config.get("TESTING", False)
    is_server = app.config.get("BACKEND", "sqlite") != "sqlite" and not is_testing

    default_level = "INFO" if is_server else ("WARNING" if is_testing else "DEBUG")
    level_name = os.getenv("LOG_LEVEL", default_level)
    level = getattr(logging, level_name.upper(), logging.INFO)

    formatter = JSONFormatter() if is_server else ReadableFormatter()

    root = logging.getLogger()
    # Remove existing handlers to prevent duplicates in tests
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s backend=%s",
                        level_name, "JSON" if is_server else "readable",
                        app.config.get("BACKEND"), extra={"backend": app.config.get("BACKEND")})
