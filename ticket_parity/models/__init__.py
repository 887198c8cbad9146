"""
Shared Flask-SQLAlchemy handle and column helpers for the ticket domain.

All models import ``db`` from here so that ``create_app`` binds a single
metadata to whichever backend the active config points at.
"""

from datetime import timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# BIGINT on the server engines; SQLite only auto-increments INTEGER PRIMARY KEY.
ID_TYPE = db.BigInteger().with_variant(db.Integer(), "sqlite")


def as_utc(value):
    """Return ``value`` as an aware UTC datetime (SQLite hands back naive ones)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value):
    """ISO-8601 string for an optional datetime, normalised to UTC."""
    value = as_utc(value)
    return value.isoformat() if value else None


class VersionedMixin:
    """Adds the optimistic-concurrency counter used by the controller."""

    version = db.Column(
        db.BigInteger,
        nullable=False,
        default=0,
        server_default="0",
        comment="Incremented by exactly 1 on every successful write",
    )
