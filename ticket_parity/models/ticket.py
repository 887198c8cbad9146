"""
Ticket aggregate.

Models:
    - Ticket: versioned work item owned by a Project, reported by a User

The schema-less ``metadata`` column holds a JSON object whose values are
restricted to ``MetadataValue``: strings, numbers, booleans, lists and
nested maps of the same. ``metadata_shape_errors`` reports that shape before
any write reaches the database.
"""

from __future__ import annotations

from typing import Union

from sqlalchemy.dialects.postgresql import JSONB

from ticket_parity.models import ID_TYPE, VersionedMixin, as_utc, db, iso
from ticket_parity.models.policy import fk

# ── Constants ────────────────────────────────────────────────────────────────

TICKET_STATUSES = ("OPEN", "IN_PROGRESS", "REVIEW", "RESOLVED", "CLOSED")
TICKET_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
CLOSED_STATUSES = frozenset({"RESOLVED", "CLOSED"})

MetadataValue = Union[str, int, float, bool, list["MetadataValue"], dict[str, "MetadataValue"]]

JSON_TYPE = db.JSON().with_variant(JSONB(), "postgresql")


def metadata_shape_errors(value, path: str = "metadata") -> list[str]:
    """Return a list of paths whose values fall outside ``MetadataValue``."""
    if isinstance(value, (str, bool, int, float)):
        return []
    if isinstance(value, list):
        errors = []
        for index, item in enumerate(value):
            errors.extend(metadata_shape_errors(item, f"{path}[{index}]"))
        return errors
    if isinstance(value, dict):
        errors = []
        for key, item in value.items():
            if not isinstance(key, str):
                errors.append(f"{path}: key {key!r} is not a string")
                continue
            errors.extend(metadata_shape_errors(item, f"{path}.{key}"))
        return errors
    return [f"{path}: unsupported type {type(value).__name__}"]


class Ticket(VersionedMixin, db.Model):
    """A unit of tracked work.

    Relationships are plain foreign-key ids; related rows are fetched on
    demand through ``association_service.load``.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        db.CheckConstraint(
            "estimated_hours IS NULL OR estimated_hours >= 0",
            name="ck_tickets_estimated_hours_non_negative",
        ),
        db.CheckConstraint(
            "due_date IS NULL OR due_date > create_time",
            name="ck_tickets_due_after_create",
        ),
        db.Index("ix_tickets_project_status", "project_id", "status"),
    )

    id = db.Column(ID_TYPE, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="OPEN",
                       comment="OPEN | IN_PROGRESS | REVIEW | RESOLVED | CLOSED")
    priority = db.Column(db.String(20), nullable=False, default="MEDIUM",
                         comment="LOW | MEDIUM | HIGH | CRITICAL")
    # "metadata" is reserved on declarative classes
    meta = db.Column("metadata", JSON_TYPE, nullable=True, default=dict)

    assignee_id = db.Column(ID_TYPE, fk("ticket.assignee"), nullable=True, index=True)
    reporter_id = db.Column(ID_TYPE, fk("ticket.reporter"), nullable=False, index=True)
    project_id = db.Column(ID_TYPE, fk("ticket.project"), nullable=False, index=True)
    dependent_on_id = db.Column(ID_TYPE, fk("ticket.dependent_on"), nullable=True, index=True)

    create_time = db.Column(db.DateTime(timezone=True), nullable=False)
    update_time = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_hours = db.Column(db.Float, nullable=True, comment="Effort in person-hours")
    resolved_date = db.Column(db.DateTime(timezone=True), nullable=True)

    def metadata_value(self, key):
        return (self.meta or {}).get(key)

    @property
    def resolution_time(self):
        if self.create_time is None or self.resolved_date is None:
            return None
        return as_utc(self.resolved_date) - as_utc(self.create_time)

    def is_overdue(self, now) -> bool:
        """True when a due date has passed and the ticket is still open."""
        if self.due_date is None or self.status in CLOSED_STATUSES:
            return False
        return as_utc(now) > as_utc(self.due_date)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "metadata": self.meta or {},
            "assignee_id": self.assignee_id,
            "reporter_id": self.reporter_id,
            "project_id": self.project_id,
            "dependent_on_id": self.dependent_on_id,
            "create_time": iso(self.create_time),
            "update_time": iso(self.update_time),
            "due_date": iso(self.due_date),
            "estimated_hours": self.estimated_hours,
            "resolved_date": iso(self.resolved_date),
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<Ticket {self.id} v{self.version}: {self.title}>"
