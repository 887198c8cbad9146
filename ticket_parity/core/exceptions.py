"""
Exception hierarchy shared by every service.

Why this module exists:
  Each backend reports the same logical failure through a different driver
  exception (psycopg2 ``SerializationFailure`` on CockroachDB, a plain
  zero-row UPDATE on PostgreSQL, ``sqlite3.OperationalError`` on SQLite).
  Services translate those through ``ticket_parity.utils.errors`` into the
  types below so callers can handle one taxonomy regardless of engine.

Kinds:
  VersionConflict     optimistic write lost the race; re-read and decide
  IntegrityViolation  unique / foreign-key / RESTRICT / check violation
  ConstraintViolation write-time validator rejection (an IntegrityViolation)
  UnsupportedFeature  backend cannot execute a capability (informational)
  ProbeError          a metadata query was rejected; stop probing the table
  NotFoundError       the addressed row does not exist

Usage:
    from ticket_parity.core.exceptions import VersionConflict

    try:
        controller.write(ticket, expected_version=3)
    except VersionConflict as exc:
        ticket, version = controller.read(Ticket, exc.aggregate_id)
"""

from ticket_parity.utils.errors import E


class TicketParityError(Exception):
    """Base class; ``code`` is a machine-readable ``E.*`` constant."""

    code = E.INTERNAL


class NotFoundError(TicketParityError):
    """Raised when the addressed row does not exist.

    Args:
        resource: Model name (e.g. "Ticket").
        resource_id: The primary key that was looked up.
    """

    code = E.NOT_FOUND

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class VersionConflict(TicketParityError):
    """Raised when a write's expected version no longer matches the stored row.

    Always recoverable by re-reading; the controller never retries on its own.
    Nothing from the losing write is persisted.

    Args:
        aggregate: Model name.
        aggregate_id: Primary key of the contested row.
        expected_version: Version the writer started from.
        actual_version: Stored version observed after the failed compare, when
            the backend let us see it (None when the backend aborted the
            transaction before the row could be re-read).
    """

    code = E.VERSION_CONFLICT

    def __init__(
        self,
        aggregate: str,
        aggregate_id,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        self.aggregate = aggregate
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"{aggregate} id={aggregate_id}: expected version {expected_version}"
        if actual_version is not None:
            msg += f", found {actual_version}"
        super().__init__(msg)


class IntegrityViolation(TicketParityError):
    """Raised when a write or delete would break a declared constraint.

    Fatal to the current operation; retrying the same input repeats it.

    Args:
        message: Human-readable explanation.
        relationship: Policy-table key involved, if any.
        details: Optional field-level breakdown (field -> description).
    """

    code = E.INTEGRITY

    def __init__(self, message: str, relationship: str | None = None, details: dict | None = None) -> None:
        self.relationship = relationship
        self.details = details or {}
        super().__init__(message)


class ConstraintViolation(IntegrityViolation):
    """Raised by the temporal validator before a write reaches the database."""

    code = E.CONSTRAINT


class UnsupportedFeature(TicketParityError):
    """The probed backend cannot execute a capability. Informational only."""

    code = E.UNSUPPORTED_FEATURE

    def __init__(self, feature: str, backend: str | None = None, detail: str | None = None) -> None:
        self.feature = feature
        self.backend = backend
        self.detail = detail
        msg = f"Feature {feature!r} is not supported"
        if backend:
            msg += f" on {backend}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ProbeError(TicketParityError):
    """A metadata query was rejected by the backend.

    Signals a deeper incompatibility than a missing feature; callers should
    stop probing ``table``.
    """

    code = E.PROBE

    def __init__(self, table: str, section: str, detail: str) -> None:
        self.table = table
        self.section = section
        self.detail = detail
        super().__init__(f"Probe of {table!r} failed in {section}: {detail}")
