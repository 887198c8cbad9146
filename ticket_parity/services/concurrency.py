"""
Optimistic concurrency control for versioned aggregates.

Read-modify-write cycle:

    controller = ConcurrencyController(clock=clock)
    ticket, version = controller.read(Ticket, ticket_id)     # CLEAN
    ticket.set(status="IN_PROGRESS")                         # DIRTY
    new_version = controller.write(ticket, version)          # COMMITTED
                                                             # or VersionConflict
                                                             #   -> CONFLICTED

The version check and increment happen in one statement:

    UPDATE tickets
       SET status = :status, version = version + 1, update_time = :now
     WHERE id = :id AND version = :expected

so the engine's own row locking is the only thing relied on. Under N writers
racing from the same version exactly one UPDATE matches; the rest match zero
rows (PostgreSQL, SQLite) or are aborted by the engine (CockroachDB SQLSTATE
40001). Both paths surface as ``VersionConflict``. The controller never
retries; the caller re-reads and decides.

Timestamps (create_time / update_time) are always stamped here from the
injected clock, never taken from the caller.
"""

from __future__ import annotations

import enum
import logging

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError

from ticket_parity.core.clock import default_clock
from ticket_parity.core.exceptions import IntegrityViolation, NotFoundError, VersionConflict
from ticket_parity.models import VersionedMixin, as_utc, db
from ticket_parity.services.integrity_policy import IntegrityPolicyEngine
from ticket_parity.services.temporal_validator import TemporalValidator
from ticket_parity.utils.errors import normalize_db_error
from ticket_parity.utils.helpers import begin_write

logger = logging.getLogger(__name__)

STAMPED_FIELDS = frozenset({"version", "create_time", "update_time"})


class AggregateState(str, enum.Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    COMMITTED = "committed"
    CONFLICTED = "conflicted"


def column_map(model) -> dict[str, sa.Column]:
    """Attribute name -> Column for every mapped column of ``model``."""
    return {attr.key: attr.columns[0] for attr in sa.inspect(model).column_attrs}


def is_versioned(model) -> bool:
    return isinstance(model, type) and issubclass(model, VersionedMixin)


def _normalize_value(value):
    if hasattr(value, "tzinfo") and hasattr(value, "hour"):
        return as_utc(value)
    return value


class Aggregate:
    """Detached snapshot of one row plus the caller's pending changes.

    Attribute access returns the pending value when one is set, otherwise
    the value read from the database.
    """

    def __init__(self, model, values: dict) -> None:
        self.model = model
        self._values = dict(values)
        self._changes: dict = {}
        self.state = AggregateState.CLEAN

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        changes = self.__dict__.get("_changes", {})
        if name in changes:
            return changes[name]
        values = self.__dict__.get("_values", {})
        if name in values:
            return values[name]
        raise AttributeError(f"{self.__dict__.get('model')!r} has no field {name!r}")

    @property
    def id(self):
        return self._values.get("id")

    @property
    def version(self):
        return self._values.get("version")

    @property
    def changes(self) -> dict:
        return dict(self._changes)

    @property
    def is_dirty(self) -> bool:
        return bool(self._changes)

    def set(self, **fields) -> "Aggregate":
        """Stage local changes; nothing reaches the database until ``write``."""
        if self.state is AggregateState.CONFLICTED:
            raise RuntimeError(
                f"{self.model.__name__} id={self.id} lost a version race; re-read before mutating"
            )
        columns = column_map(self.model)
        for name, value in fields.items():
            if name not in columns:
                raise AttributeError(f"{self.model.__name__} has no field {name!r}")
            if name == "id" or name in STAMPED_FIELDS:
                raise AttributeError(f"{self.model.__name__}.{name} is managed by the write path")
            self._changes[name] = _normalize_value(value)
        if self._changes:
            self.state = AggregateState.DIRTY
        return self

    def discard(self) -> None:
        """Abandon pending changes; the stored row is untouched."""
        self._changes.clear()
        if self.state is not AggregateState.CONFLICTED:
            self.state = AggregateState.CLEAN

    def as_dict(self) -> dict:
        merged = dict(self._values)
        merged.update(self._changes)
        return merged

    def _mark_committed(self, new_version: int, update_time) -> None:
        self._values.update(self._changes)
        self._values["version"] = new_version
        if "update_time" in self._values:
            self._values["update_time"] = update_time
        self._changes.clear()
        self.state = AggregateState.COMMITTED

    def _mark_conflicted(self) -> None:
        self.state = AggregateState.CONFLICTED

    def __repr__(self) -> str:
        return (
            f"<Aggregate {self.model.__name__} id={self.id} "
            f"v{self.version} {self.state.value}>"
        )


class ConcurrencyController:
    """Creates, reads and version-checked writes of aggregates.

    Args:
        session: SQLAlchemy session; defaults to the app-context ``db.session``.
        clock: Time source for create/update stamps.
        validator: ``TemporalValidator`` applied before every write.
        integrity: ``IntegrityPolicyEngine`` whose write-time checks run
            alongside the validator.
    """

    def __init__(self, session=None, clock=None, validator=None, integrity=None) -> None:
        self._session = session
        self.clock = clock or default_clock()
        self.validator = validator or TemporalValidator(clock=self.clock, session=session)
        self.integrity = integrity or IntegrityPolicyEngine(session=session)

    @property
    def session(self):
        return self._session or db.session

    # ── Create ──────────────────────────────────────────────────────────

    def create(self, model, *, commit: bool = True, **fields) -> Aggregate:
        """Insert a new row; versioned models start at version 0."""
        columns = column_map(model)
        unknown = set(fields) - set(columns)
        if unknown:
            raise AttributeError(f"{model.__name__} has no field(s) {sorted(unknown)}")
        stamped = set(fields) & STAMPED_FIELDS
        if stamped:
            raise AttributeError(f"{model.__name__}.{sorted(stamped)} are managed by the write path")

        now = self.clock.now()
        values = {name: _normalize_value(value) for name, value in fields.items()}
        values["create_time"] = now
        if "update_time" in columns:
            values["update_time"] = now
        if is_versioned(model):
            values["version"] = 0

        draft = Aggregate(model, values)
        self.validator.validate(draft)
        self.integrity.check_write(draft)

        stmt = sa.insert(model.__table__).values({columns[k]: v for k, v in values.items()})
        try:
            result = self.session.execute(stmt)
            pk = result.inserted_primary_key[0]
            if commit:
                self.session.commit()
        except DBAPIError as exc:
            self.session.rollback()
            normalized = normalize_db_error(exc)
            logger.warning("Insert into %s failed: %s", model.__tablename__, normalized,
                           extra={"table": model.__tablename__})
            if normalized is exc:
                raise
            raise normalized from exc

        logger.debug("Created %s id=%s", model.__name__, pk,
                     extra={"aggregate": model.__name__, "aggregate_id": pk, "version": values.get("version")})
        aggregate, _ = self.read(model, pk)
        return aggregate

    # ── Read ────────────────────────────────────────────────────────────

    def read(self, model, pk) -> tuple[Aggregate, int | None]:
        """Fetch one row as a CLEAN aggregate together with its version."""
        columns = column_map(model)
        stmt = sa.select(*(col.label(name) for name, col in columns.items())).where(
            columns["id"] == pk
        )
        row = self.session.execute(stmt).mappings().first()
        if row is None:
            raise NotFoundError(model.__name__, pk)
        aggregate = Aggregate(model, dict(row))
        return aggregate, aggregate.version

    # ── Write ───────────────────────────────────────────────────────────

    def write(self, aggregate: Aggregate, expected_version: int | None = None, *, commit: bool = True) -> int:
        """Persist pending changes if the stored version still equals ``expected_version``.

        Returns the new version (``expected_version + 1``). Raises
        ``VersionConflict`` without persisting anything when another writer
        got there first.
        """
        model = aggregate.model
        if not is_versioned(model):
            raise TypeError(f"{model.__name__} is not a versioned aggregate")
        if expected_version is None:
            expected_version = aggregate.version
        if aggregate.state is AggregateState.CONFLICTED:
            raise VersionConflict(model.__name__, aggregate.id, expected_version)

        self.validator.validate(aggregate)
        self.integrity.check_write(aggregate)

        columns = column_map(model)
        now = self.clock.now()
        values = {columns[name]: value for name, value in aggregate.changes.items()}
        values[columns["version"]] = columns["version"] + 1
        if "update_time" in columns:
            values[columns["update_time"]] = now

        stmt = (
            sa.update(model.__table__)
            .where(columns["id"] == aggregate.id, columns["version"] == expected_version)
            .values(values)
        )
        log_extra = {"aggregate": model.__name__, "aggregate_id": aggregate.id, "version": expected_version}

        try:
            begin_write(self.session)
            matched = self.session.execute(stmt).rowcount
            if matched == 0:
                actual = self.session.execute(
                    sa.select(columns["version"]).where(columns["id"] == aggregate.id)
                ).scalar()
                if commit:
                    self.session.rollback()
                if actual is None:
                    raise NotFoundError(model.__name__, aggregate.id)
                aggregate._mark_conflicted()
                logger.info("Version conflict on %s id=%s: expected %s, found %s",
                            model.__name__, aggregate.id, expected_version, actual, extra=log_extra)
                raise VersionConflict(model.__name__, aggregate.id, expected_version, actual)
            try:
                self.integrity.recheck_write(aggregate)
            except IntegrityViolation:
                if commit:
                    self.session.rollback()
                raise
            if commit:
                self.session.commit()
        except DBAPIError as exc:
            self.session.rollback()
            normalized = normalize_db_error(
                exc, aggregate=model.__name__, aggregate_id=aggregate.id, expected_version=expected_version,
            )
            if isinstance(normalized, VersionConflict):
                aggregate._mark_conflicted()
                logger.info("Version conflict on %s id=%s reported by backend: %s",
                            model.__name__, aggregate.id, exc.orig, extra=log_extra)
            else:
                logger.warning("Write to %s id=%s failed: %s", model.__name__, aggregate.id, normalized,
                               extra=log_extra)
            if normalized is exc:
                raise
            raise normalized from exc

        new_version = expected_version + 1
        aggregate._mark_committed(new_version, now)
        logger.debug("Committed %s id=%s v%s -> v%s", model.__name__, aggregate.id,
                     expected_version, new_version, extra=log_extra)
        return new_version

    def commit(self, aggregate: Aggregate | None = None) -> None:
        """Commit a caller-owned transaction, normalising backend failures.

        CockroachDB may only report a serialization failure at commit. Pass
        the aggregate written with ``commit=False`` to have that surface as
        ``VersionConflict`` against it.
        """
        try:
            self.session.commit()
        except DBAPIError as exc:
            self.session.rollback()
            if aggregate is None:
                normalized = normalize_db_error(exc)
            else:
                normalized = normalize_db_error(
                    exc, aggregate=aggregate.model.__name__, aggregate_id=aggregate.id,
                    expected_version=aggregate.version - 1,
                )
                if isinstance(normalized, VersionConflict):
                    aggregate._mark_conflicted()
            if normalized is exc:
                raise
            raise normalized from exc

