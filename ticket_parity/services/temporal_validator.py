"""
Temporal / check-constraint validation at the write boundary.

Checks mirror the CHECK constraints declared on the tables so that a bad
write is rejected the same way on every backend, including those that
ignore or only partially enforce CHECK clauses:

    Ticket   due_date > create_time (when set), estimated_hours >= 0,
             status / priority membership, metadata value shape
    Sprint   start_date < end_date
    WorkLog  start_time < end_time, hours_spent >= 0

Overlap detection is advisory: it reports intervals that intersect a
candidate using half-open semantics ``[start, end)`` and leaves the decision
to reject to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ticket_parity.core.clock import default_clock
from ticket_parity.core.exceptions import ConstraintViolation
from ticket_parity.models import as_utc, db
from ticket_parity.models.sprint import Sprint
from ticket_parity.models.ticket import (
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    Ticket,
    metadata_shape_errors,
)
from ticket_parity.models.work_log import WorkLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Interval:
    """Half-open time interval ``[start, end)``."""

    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return intervals_overlap(self.start, self.end, other.start, other.end)


def intervals_overlap(a_start, a_end, b_start, b_end) -> bool:
    """Standard half-open intersection test: ``a_start < b_end and b_start < a_end``."""
    return as_utc(a_start) < as_utc(b_end) and as_utc(b_start) < as_utc(a_end)


def _model_of(aggregate):
    return getattr(aggregate, "model", None) or type(aggregate)


class TemporalValidator:
    """Validates aggregates before they are written."""

    def __init__(self, clock=None, session=None) -> None:
        self._clock = clock or default_clock()
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # ── Write-time validation ───────────────────────────────────────────

    def validate(self, aggregate) -> None:
        """Raise ``ConstraintViolation`` listing every failed check."""
        model = _model_of(aggregate)
        if model is Ticket:
            errors = self._ticket_errors(aggregate)
        elif model is Sprint:
            errors = self._ordering_errors(aggregate, "start_date", "end_date")
        elif model is WorkLog:
            errors = self._ordering_errors(aggregate, "start_time", "end_time")
            hours = getattr(aggregate, "hours_spent", None)
            if hours is not None and hours < 0:
                errors["hours_spent"] = f"must be >= 0 (got {hours})"
        else:
            errors = {}

        if errors:
            field, reason = next(iter(errors.items()))
            logger.info(
                "Constraint violation on %s: %s",
                model.__name__, errors,
                extra={"aggregate": model.__name__, "event_type": "constraint_violation"},
            )
            raise ConstraintViolation(f"{model.__name__}.{field} {reason}", details=errors)

    def _ticket_errors(self, ticket) -> dict:
        errors = {}
        status = getattr(ticket, "status", None)
        if status is not None and status not in TICKET_STATUSES:
            errors["status"] = f"must be one of {', '.join(TICKET_STATUSES)}"
        priority = getattr(ticket, "priority", None)
        if priority is not None and priority not in TICKET_PRIORITIES:
            errors["priority"] = f"must be one of {', '.join(TICKET_PRIORITIES)}"

        due_date = getattr(ticket, "due_date", None)
        if due_date is not None:
            created = getattr(ticket, "create_time", None) or self._clock.now()
            if as_utc(due_date) <= as_utc(created):
                errors["due_date"] = (
                    f"must be after create_time ({as_utc(created).isoformat()})"
                )

        hours = getattr(ticket, "estimated_hours", None)
        if hours is not None and hours < 0:
            errors["estimated_hours"] = f"must be >= 0 (got {hours})"

        meta = getattr(ticket, "meta", None)
        if meta is not None:
            if not isinstance(meta, dict):
                errors["meta"] = "must be a JSON object"
            else:
                shape = metadata_shape_errors(meta)
                if shape:
                    errors["meta"] = "; ".join(shape)
        return errors

    @staticmethod
    def _ordering_errors(aggregate, start_field: str, end_field: str) -> dict:
        start = getattr(aggregate, start_field, None)
        end = getattr(aggregate, end_field, None)
        if start is None or end is None:
            return {}
        if as_utc(start) >= as_utc(end):
            return {start_field: f"must be before {end_field}"}
        return {}

    # ── Overlap detection (advisory) ────────────────────────────────────

    def find_overlapping_sprints(self, project_id, start, end, exclude_id=None) -> list[Sprint]:
        """Sprints of ``project_id`` intersecting ``[start, end)``."""
        return self._overlapping(
            Sprint, Sprint.project_id == project_id,
            Sprint.start_date, Sprint.end_date, start, end, exclude_id,
        )

    def find_overlapping_work_logs(self, user_id, start, end, exclude_id=None) -> list[WorkLog]:
        """Work logs of ``user_id`` intersecting ``[start, end)``."""
        return self._overlapping(
            WorkLog, WorkLog.user_id == user_id,
            WorkLog.start_time, WorkLog.end_time, start, end, exclude_id,
        )

    def _overlapping(self, model, scope, start_col, end_col, start, end, exclude_id):
        stmt = (
            db.select(model)
            .where(scope, start_col < as_utc(end), end_col > as_utc(start))
            .order_by(start_col, model.id)
            .execution_options(populate_existing=True)
        )
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        rows = list(self.session.scalars(stmt))
        if rows:
            logger.debug(
                "%d %s row(s) overlap [%s, %s)",
                len(rows), model.__tablename__, start, end,
                extra={"table": model.__tablename__},
            )
        return rows
