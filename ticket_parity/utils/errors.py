"""Error codes and backend-exception normalisation.

Usage
-----
    from ticket_parity.utils.errors import normalize_db_error

    try:
        session.execute(stmt)
    except DBAPIError as exc:
        session.rollback()
        raise normalize_db_error(exc, aggregate="Ticket", aggregate_id=7,
                                 expected_version=3) from exc
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants carried on every exception."""

    NOT_FOUND = "ERR_NOT_FOUND"
    VERSION_CONFLICT = "ERR_VERSION_CONFLICT"
    INTEGRITY = "ERR_INTEGRITY"
    CONSTRAINT = "ERR_CONSTRAINT"
    UNSUPPORTED_FEATURE = "ERR_UNSUPPORTED_FEATURE"
    PROBE = "ERR_PROBE"
    INTERNAL = "ERR_INTERNAL"


# ── SQLSTATE classes ──────────────────────────────────────────────────
# serialization_failure (CockroachDB "restart transaction"), deadlock_detected,
# lock_not_available
CONCURRENCY_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

INTEGRITY_KINDS = {
    "23502": "not_null",
    "23503": "foreign_key",
    "23505": "unique",
    "23514": "check",
}

_SQLITE_INTEGRITY_KINDS = (
    ("NOT NULL constraint failed", "not_null"),
    ("FOREIGN KEY constraint failed", "foreign_key"),
    ("UNIQUE constraint failed", "unique"),
    ("CHECK constraint failed", "check"),
)

_SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")


def sqlstate_of(exc) -> str | None:
    """Return the SQLSTATE of a wrapped DBAPI error, if the driver exposes one.

    psycopg2 uses ``pgcode``; psycopg 3 uses ``sqlstate``. SQLite has none.
    """
    orig = getattr(exc, "orig", exc)
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


def driver_message(exc) -> str:
    """First line of the driver's error text, without SQLAlchemy's decoration."""
    orig = getattr(exc, "orig", None) or exc
    text = str(orig).strip()
    return text.splitlines()[0] if text else type(orig).__name__


def integrity_kind(exc) -> str | None:
    """Classify an integrity failure as not_null / foreign_key / unique / check."""
    code = sqlstate_of(exc)
    if code in INTEGRITY_KINDS:
        return INTEGRITY_KINDS[code]
    message = driver_message(exc)
    for needle, kind in _SQLITE_INTEGRITY_KINDS:
        if needle in message:
            return kind
    if code and code.startswith("23"):
        return "integrity"
    if isinstance(exc, IntegrityError):
        return "integrity"
    return None


def is_concurrency_error(exc) -> bool:
    """True when the backend aborted because another writer held the row."""
    if isinstance(exc, StaleDataError):
        return True
    if sqlstate_of(exc) in CONCURRENCY_SQLSTATES:
        return True
    message = driver_message(exc).lower()
    return any(needle in message for needle in _SQLITE_LOCK_MESSAGES)


def normalize_db_error(
    exc: Exception,
    *,
    aggregate: str | None = None,
    aggregate_id=None,
    expected_version: int | None = None,
    relationship: str | None = None,
) -> Exception:
    """Map a backend exception onto the shared taxonomy.

    Concurrency failures only become ``VersionConflict`` on a versioned write
    path (``expected_version`` given). Anything unrecognised is returned
    unchanged so the caller re-raises the original.
    """
    from ticket_parity.core.exceptions import IntegrityViolation, VersionConflict

    if expected_version is not None and is_concurrency_error(exc):
        return VersionConflict(aggregate or "aggregate", aggregate_id, expected_version)

    if isinstance(exc, DBAPIError):
        kind = integrity_kind(exc)
        if kind is not None:
            return IntegrityViolation(
                f"{kind} violation: {driver_message(exc)}",
                relationship=relationship,
                details={"kind": kind, "sqlstate": sqlstate_of(exc)},
            )

    return exc
