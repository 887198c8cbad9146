"""
Tests for ticket workflow helpers: resolve, overdue listing, dependency
chains and logged-hour totals.
"""

from datetime import timedelta

import pytest

from ticket_parity.core.exceptions import NotFoundError, VersionConflict
from ticket_parity.models.ticket import Ticket
from ticket_parity.models.work_log import WorkLog
from ticket_parity.services import ticket_service
from ticket_parity.services.association_service import load


class TestResolve:
    def test_resolve_sets_status_and_resolved_date(self, controller, fixed_clock, ticket):
        fixed_clock.advance(timedelta(hours=5))

        resolved, version = ticket_service.resolve_ticket(ticket.id, controller=controller)

        assert version == 1
        assert resolved.status == "RESOLVED"
        stored = load(Ticket, ticket.id)
        assert stored.status == "RESOLVED"
        assert stored.resolution_time == timedelta(hours=5)

    def test_resolve_with_stale_version(self, controller, ticket):
        t, version = controller.read(Ticket, ticket.id)
        t.set(priority="HIGH")
        controller.write(t, version)

        with pytest.raises(VersionConflict):
            ticket_service.resolve_ticket(ticket.id, expected_version=0, controller=controller)
        assert load(Ticket, ticket.id).status == "OPEN"


class TestOverdue:
    def test_only_open_past_due_tickets(self, controller, make_ticket, project, reporter, t0):
        late = make_ticket(project, reporter, title="late", due_date=t0 + timedelta(days=1))
        make_ticket(project, reporter, title="future", due_date=t0 + timedelta(days=30))
        make_ticket(project, reporter, title="no due date")
        done = make_ticket(project, reporter, title="done", due_date=t0 + timedelta(days=2))
        ticket_service.resolve_ticket(done.id, controller=controller)

        now = t0 + timedelta(days=10)
        overdue = ticket_service.find_overdue_tickets(now)

        assert [t.id for t in overdue] == [late.id]
        assert overdue[0].is_overdue(now)

    def test_scoped_to_project(self, make_ticket, make_project, reporter, t0):
        other = make_project("Other")
        make_ticket(other, reporter, due_date=t0 + timedelta(days=1))
        mine = make_project("Mine")
        assert ticket_service.find_overdue_tickets(t0 + timedelta(days=5), project_id=mine.id) == []


class TestDependencyChain:
    def test_walks_nearest_first(self, make_ticket, project, reporter):
        root = make_ticket(project, reporter, title="root")
        middle = make_ticket(project, reporter, title="middle", dependent_on_id=root.id)
        leaf = make_ticket(project, reporter, title="leaf", dependent_on_id=middle.id)

        assert ticket_service.dependency_chain(leaf.id) == [middle.id, root.id]
        assert ticket_service.dependency_chain(root.id) == []

    def test_missing_ticket(self):
        with pytest.raises(NotFoundError):
            ticket_service.dependency_chain(1234)


class TestAggregates:
    def test_total_hours(self, controller, ticket, reporter, t0):
        assert ticket_service.total_hours_for_ticket(ticket.id) == 0.0
        for offset, hours in ((0, 1.5), (3, 2.0)):
            start = t0 + timedelta(hours=offset)
            controller.create(WorkLog, ticket_id=ticket.id, user_id=reporter.id, description="dev",
                              start_time=start, end_time=start + timedelta(hours=hours), hours_spent=hours)
        assert ticket_service.total_hours_for_ticket(ticket.id) == pytest.approx(3.5)

    def test_count_by_priority(self, make_ticket, project, reporter):
        make_ticket(project, reporter, priority="HIGH")
        make_ticket(project, reporter, priority="HIGH")
        make_ticket(project, reporter)
        assert ticket_service.count_by_priority(project.id) == {"HIGH": 2, "MEDIUM": 1}
