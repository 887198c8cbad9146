"""
Dialect capability probe.

Answers two questions about whatever backend a connection points at:

  1. What does a table look like according to ``information_schema``?
     Three fixed queries (columns, primary key, identity columns). A query
     the backend rejects raises ``ProbeError`` and stops the probe of that
     table; a query that merely returns nothing is recorded as ``NO_ROWS``.

  2. Which PostgreSQL features does it actually execute?
     Each feature runs one self-contained canonical query and checks the
     result:

        SUPPORTED    query ran and returned the expected answer
        UNSUPPORTED  backend said "not supported / no such function / syntax"
        ERRORED      anything else (wrong answer, unrelated failure)

Everything here is read-only. After a failed statement the probe rolls back
its own connection so the next probe starts clean, so hand it a dedicated
connection rather than one carrying other work:

    with db.engine.connect() as conn:
        probe = DialectProbe(conn)
        report = probe.detect_all()
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError

from ticket_parity.core.exceptions import ProbeError, UnsupportedFeature
from ticket_parity.utils.errors import driver_message, sqlstate_of

logger = logging.getLogger(__name__)


# ── Result types ──────────────────────────────────────────────────────


class FeatureStatus(str, enum.Enum):
    SUPPORTED = "SUPPORTED"
    UNSUPPORTED = "UNSUPPORTED"
    ERRORED = "ERRORED"


class SectionStatus(str, enum.Enum):
    OK = "OK"
    NO_ROWS = "NO_ROWS"


@dataclass(frozen=True)
class FeatureResult:
    feature: str
    status: FeatureStatus
    detail: str | None = None

    @property
    def supported(self) -> bool:
        return self.status is FeatureStatus.SUPPORTED

    def to_dict(self) -> dict:
        return {"feature": self.feature, "status": self.status.value, "detail": self.detail}


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool
    default: str | None = None
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    ordinal: int = 0

    @property
    def type_sql(self) -> str:
        if self.max_length is not None:
            return f"{self.data_type}({self.max_length})"
        if self.data_type.lower() in ("numeric", "decimal") and self.precision is not None:
            return f"{self.data_type}({self.precision},{self.scale or 0})"
        return self.data_type


@dataclass
class TableDescription:
    table: str
    columns: list[ColumnInfo] = field(default_factory=list)
    primary_key: list[str] = field(default_factory=list)
    identity_columns: dict[str, str] = field(default_factory=dict)
    sections: dict[str, SectionStatus] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return bool(self.columns)

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "columns": [c.__dict__ for c in self.columns],
            "primary_key": list(self.primary_key),
            "identity_columns": dict(self.identity_columns),
            "sections": {k: v.value for k, v in self.sections.items()},
        }


@dataclass
class CapabilityReport:
    backend: str
    results: dict[str, FeatureResult] = field(default_factory=dict)

    def status(self, feature_id: str) -> FeatureStatus:
        return self.results[feature_id].status

    @property
    def unsupported(self) -> list[str]:
        return [f for f, r in self.results.items() if r.status is FeatureStatus.UNSUPPORTED]

    def to_dict(self) -> dict:
        return {
            "backend": self.backend,
            "features": {f: r.to_dict() for f, r in self.results.items()},
        }


# ── Canonical feature queries ─────────────────────────────────────────


@dataclass(frozen=True)
class CanonicalQuery:
    """One self-contained query and the predicate its rows must satisfy."""

    feature: str
    description: str
    sql: str
    check: Callable[[list], bool]


def _as_float_list(value) -> list[float]:
    return [float(v) for v in value]


CANONICAL_QUERIES: dict[str, CanonicalQuery] = {q.feature: q for q in (
    CanonicalQuery(
        "window_functions",
        "ROW_NUMBER() OVER (ORDER BY ...)",
        "SELECT ROW_NUMBER() OVER (ORDER BY v DESC) AS rn, v "
        "FROM (SELECT 10 AS v UNION ALL SELECT 20 UNION ALL SELECT 30) AS t ORDER BY rn",
        lambda rows: [(r[0], r[1]) for r in rows] == [(1, 30), (2, 20), (3, 10)],
    ),
    CanonicalQuery(
        "recursive_cte",
        "WITH RECURSIVE dependency walk bounded at depth 10",
        "WITH RECURSIVE chain(node, depth) AS ("
        " SELECT 1, 0"
        " UNION ALL"
        " SELECT node + 1, depth + 1 FROM chain WHERE depth < 9"
        ") SELECT COUNT(*), MAX(depth) FROM chain",
        lambda rows: (rows[0][0], rows[0][1]) == (10, 9),
    ),
    CanonicalQuery(
        "array_slicing",
        "array[2:3] slice of a numeric array",
        "SELECT (ARRAY[1.5, 2.5, 3.5, 4.5])[2:3] AS sliced",
        lambda rows: _as_float_list(rows[0][0]) == [2.5, 3.5],
    ),
    CanonicalQuery(
        "percentile",
        "PERCENTILE_CONT ordered-set aggregate",
        "SELECT PERCENTILE_CONT(0.25) WITHIN GROUP (ORDER BY v) AS p25 "
        "FROM (SELECT 1 AS v UNION ALL SELECT 2 UNION ALL SELECT 3"
        " UNION ALL SELECT 4 UNION ALL SELECT 5) AS t",
        lambda rows: float(rows[0][0]) == 2.0,
    ),
    CanonicalQuery(
        "interval_normalization",
        "JUSTIFY_HOURS(INTERVAL '30 hours')",
        "SELECT CAST(JUSTIFY_HOURS(INTERVAL '30 hours') AS TEXT) AS justified",
        lambda rows: "1 day" in str(rows[0][0]),
    ),
    CanonicalQuery(
        "json_operators",
        "jsonb -> / ->> path operators",
        "SELECT ('{\"a\": {\"b\": 7}}'::jsonb -> 'a') ->> 'b' AS leaf",
        lambda rows: str(rows[0][0]) == "7",
    ),
    CanonicalQuery(
        "identity_columns",
        "information_schema.columns.identity_generation",
        "SELECT COUNT(*) FROM information_schema.columns WHERE identity_generation IS NOT NULL",
        lambda rows: isinstance(rows[0][0], (int, Decimal)),
    ),
)}


# ── Error classification ──────────────────────────────────────────────

# feature_not_supported, undefined_function, syntax_error, undefined_object
UNSUPPORTED_SQLSTATES = frozenset({"0A000", "42883", "42601", "42704"})

_UNSUPPORTED_MESSAGES = (
    "not supported",
    "unimplemented",
    "not implemented",
    "syntax error",
    "unrecognized token",
    "no such function",
    "no such column",
    "no such table",
    "unknown function",
    "does not exist",
)


def is_unsupported_error(exc) -> bool:
    """True when the backend rejected the statement as something it cannot do."""
    if sqlstate_of(exc) in UNSUPPORTED_SQLSTATES:
        return True
    message = driver_message(exc).lower()
    return any(needle in message for needle in _UNSUPPORTED_MESSAGES)


# ── Metadata queries ──────────────────────────────────────────────────
# Constraint names are only unique per schema, and older CockroachDB names
# every primary key "primary"; the key-column join matches on all three.

DEFAULT_SCHEMA = "public"

COLUMNS_SQL = (
    "SELECT column_name, data_type, is_nullable, column_default, "
    "character_maximum_length, numeric_precision, numeric_scale, ordinal_position "
    "FROM information_schema.columns "
    "WHERE table_schema = :schema AND table_name = :table_name "
    "ORDER BY ordinal_position"
)

PRIMARY_KEY_SQL = (
    "SELECT kcu.column_name, kcu.ordinal_position "
    "FROM information_schema.table_constraints tc "
    "JOIN information_schema.key_column_usage kcu "
    "ON tc.constraint_name = kcu.constraint_name "
    "AND tc.table_schema = kcu.table_schema "
    "AND tc.table_name = kcu.table_name "
    "WHERE tc.constraint_type = 'PRIMARY KEY' "
    "AND tc.table_schema = :schema AND tc.table_name = :table_name "
    "ORDER BY kcu.ordinal_position"
)

IDENTITY_SQL = (
    "SELECT column_name, identity_generation FROM information_schema.columns "
    "WHERE table_schema = :schema AND table_name = :table_name "
    "AND identity_generation IS NOT NULL"
)


class DialectProbe:
    """Read-only capability probe bound to one SQLAlchemy ``Connection``."""

    def __init__(self, connection, features: dict[str, CanonicalQuery] | None = None,
                 schema: str = DEFAULT_SCHEMA) -> None:
        self.connection = connection
        self.schema = schema
        self.features = dict(features or CANONICAL_QUERIES)

    # ── Backend identification ──────────────────────────────────────────

    def detect_backend(self) -> str:
        """Classify the server from ``SELECT version()``; falls back to the dialect name."""
        try:
            banner = str(self.connection.execute(text("SELECT version()")).scalar() or "")
        except DBAPIError as exc:
            self._recover()
            logger.debug("version() unavailable, using dialect name: %s", driver_message(exc))
            return self.connection.dialect.name
        lowered = banner.lower()
        if "cockroach" in lowered:
            return "cockroachdb"
        if "spanner" in lowered:
            return "spanner"
        if "postgresql" in lowered:
            return "postgresql"
        return self.connection.dialect.name

    # ── Table description ───────────────────────────────────────────────

    def describe_table(self, table_name: str) -> TableDescription:
        description = TableDescription(table=table_name)

        rows = self._metadata_rows(table_name, "columns", COLUMNS_SQL)
        description.sections["columns"] = SectionStatus.OK if rows else SectionStatus.NO_ROWS
        description.columns = [
            ColumnInfo(
                name=r[0],
                data_type=r[1],
                nullable=str(r[2]).upper() != "NO",
                default=r[3],
                max_length=r[4],
                precision=r[5],
                scale=r[6],
                ordinal=r[7] or 0,
            )
            for r in rows
        ]

        rows = self._metadata_rows(table_name, "primary_key", PRIMARY_KEY_SQL)
        description.sections["primary_key"] = SectionStatus.OK if rows else SectionStatus.NO_ROWS
        description.primary_key = [r[0] for r in rows]

        rows = self._metadata_rows(table_name, "identity", IDENTITY_SQL)
        description.sections["identity"] = SectionStatus.OK if rows else SectionStatus.NO_ROWS
        description.identity_columns = {r[0]: r[1] for r in rows}

        logger.debug(
            "Described %s: %d column(s), pk=%s",
            table_name, len(description.columns), description.primary_key,
            extra={"table": table_name},
        )
        return description

    def _metadata_rows(self, table_name: str, section: str, sql: str) -> list:
        try:
            params = {"schema": self.schema, "table_name": table_name}
            return self.connection.execute(text(sql), params).fetchall()
        except DBAPIError as exc:
            self._recover()
            detail = driver_message(exc)
            logger.warning(
                "Metadata query rejected for %s (%s): %s", table_name, section, detail,
                extra={"table": table_name, "event_type": "probe_error"},
            )
            raise ProbeError(table_name, section, detail) from exc

    @staticmethod
    def reconstruct_create_table(description: TableDescription) -> str:
        """Advisory CREATE TABLE text from a description; not guaranteed executable."""
        lines = []
        for column in description.columns:
            line = f"    {column.name} {column.type_sql}"
            if not column.nullable:
                line += " NOT NULL"
            identity = description.identity_columns.get(column.name)
            if identity:
                line += f" GENERATED {identity} AS IDENTITY"
            elif column.default is not None:
                line += f" DEFAULT {column.default}"
            lines.append(line)
        if description.primary_key:
            lines.append(f"    PRIMARY KEY ({', '.join(description.primary_key)})")
        return f"CREATE TABLE {description.table} (\n" + ",\n".join(lines) + "\n);"

    # ── Feature detection ───────────────────────────────────────────────

    def detect_feature(self, feature_id: str) -> FeatureResult:
        try:
            query = self.features[feature_id]
        except KeyError:
            raise ValueError(f"Unknown feature {feature_id!r}; known: {sorted(self.features)}") from None

        try:
            rows = self.connection.execute(text(query.sql)).fetchall()
        except DBAPIError as exc:
            self._recover()
            detail = driver_message(exc)
            status = FeatureStatus.UNSUPPORTED if is_unsupported_error(exc) else FeatureStatus.ERRORED
            result = FeatureResult(feature_id, status, detail)
        else:
            result = self._check(query, rows)

        log = logger.info if result.status is FeatureStatus.SUPPORTED else logger.warning
        log("Feature %s: %s%s", feature_id, result.status.value,
            f" ({result.detail})" if result.detail else "",
            extra={"feature": feature_id, "event_type": "feature_probe"})
        return result

    @staticmethod
    def _check(query: CanonicalQuery, rows: list) -> FeatureResult:
        try:
            passed = bool(rows) and query.check(rows)
        except (TypeError, ValueError, IndexError, ArithmeticError) as exc:
            return FeatureResult(query.feature, FeatureStatus.ERRORED, f"unexpected result {rows!r}: {exc}")
        if not passed:
            return FeatureResult(query.feature, FeatureStatus.ERRORED, f"unexpected result {rows!r}")
        return FeatureResult(query.feature, FeatureStatus.SUPPORTED)

    def detect_all(self) -> CapabilityReport:
        report = CapabilityReport(backend=self.detect_backend())
        for feature_id in self.features:
            report.results[feature_id] = self.detect_feature(feature_id)
        return report

    def require(self, feature_id: str) -> FeatureResult:
        """Like ``detect_feature`` but raises ``UnsupportedFeature`` unless SUPPORTED."""
        result = self.detect_feature(feature_id)
        if not result.supported:
            raise UnsupportedFeature(feature_id, backend=self.connection.dialect.name, detail=result.detail)
        return result

    def _recover(self) -> None:
        # A failed statement aborts the transaction on PostgreSQL-family engines.
        if self.connection.in_transaction():
            self.connection.rollback()
