"""
Ticket workflow helpers built on the concurrency controller.

Features:
  - Resolve a ticket (versioned read-modify-write, resolved date from the clock)
  - Overdue ticket listing
  - dependent_on chain walk, one lookup per hop (no recursive SQL)
  - Logged-hours and per-priority aggregates
"""

import logging

import sqlalchemy as sa

from ticket_parity.core.clock import default_clock
from ticket_parity.core.exceptions import NotFoundError
from ticket_parity.models import as_utc, db
from ticket_parity.models.ticket import CLOSED_STATUSES, Ticket
from ticket_parity.models.work_log import WorkLog
from ticket_parity.services.concurrency import ConcurrencyController

logger = logging.getLogger(__name__)


def resolve_ticket(ticket_id, expected_version=None, controller: ConcurrencyController = None):
    """Mark a ticket RESOLVED; returns ``(aggregate, new_version)``.

    ``expected_version`` defaults to the version just read, so a concurrent
    writer between read and write still surfaces as ``VersionConflict``.
    """
    controller = controller or ConcurrencyController()
    ticket, version = controller.read(Ticket, ticket_id)
    if expected_version is None:
        expected_version = version
    ticket.set(status="RESOLVED", resolved_date=controller.clock.now())
    new_version = controller.write(ticket, expected_version)
    logger.info("Resolved ticket %s at v%s", ticket_id, new_version,
                extra={"aggregate": "Ticket", "aggregate_id": ticket_id, "version": new_version})
    return ticket, new_version


def find_overdue_tickets(now=None, project_id=None) -> list[Ticket]:
    """Open tickets whose due date is before ``now``, earliest first."""
    now = as_utc(now) if now is not None else default_clock().now()
    stmt = (
        sa.select(Ticket)
        .where(
            Ticket.due_date.is_not(None),
            Ticket.due_date < now,
            Ticket.status.not_in(sorted(CLOSED_STATUSES)),
        )
        .order_by(Ticket.due_date, Ticket.id)
        .execution_options(populate_existing=True)
    )
    if project_id is not None:
        stmt = stmt.where(Ticket.project_id == project_id)
    return list(db.session.scalars(stmt))


def dependency_chain(ticket_id) -> list[int]:
    """Ids the ticket depends on, nearest first.

    Cycles are rejected at write time; the ``seen`` guard only protects
    against rows written outside this package.
    """
    tickets = Ticket.__table__
    first = db.session.execute(
        sa.select(tickets.c.id, tickets.c.dependent_on_id).where(tickets.c.id == ticket_id)
    ).first()
    if first is None:
        raise NotFoundError("Ticket", ticket_id)

    chain: list[int] = []
    seen = {ticket_id}
    current = first.dependent_on_id
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        current = db.session.execute(
            sa.select(tickets.c.dependent_on_id).where(tickets.c.id == current)
        ).scalar()
    return chain


def total_hours_for_ticket(ticket_id) -> float:
    total = db.session.execute(
        sa.select(sa.func.coalesce(sa.func.sum(WorkLog.hours_spent), 0.0)).where(WorkLog.ticket_id == ticket_id)
    ).scalar_one()
    return float(total)


def count_by_priority(project_id) -> dict[str, int]:
    rows = db.session.execute(
        sa.select(Ticket.priority, sa.func.count(Ticket.id))
        .where(Ticket.project_id == project_id)
        .group_by(Ticket.priority)
    ).all()
    return {priority: count for priority, count in rows}
