"""
Tests for explicit many-to-many mutations and on-demand loaders.
"""

import pytest

from ticket_parity.core.exceptions import NotFoundError
from ticket_parity.models.associations import UserProjectRole
from ticket_parity.models.project import Project
from ticket_parity.models.ticket import Ticket
from ticket_parity.services import association_service as assoc


class TestSprintTickets:
    def test_add_returns_updated_membership(self, make_sprint, make_ticket, project, reporter):
        sprint = make_sprint(project)
        a = make_ticket(project, reporter, title="a")
        b = make_ticket(project, reporter, title="b")

        assert assoc.add_ticket_to_sprint(sprint.id, a.id) == [a.id]
        assert assoc.add_ticket_to_sprint(sprint.id, b.id) == [a.id, b.id]
        assert assoc.ticket_sprint_ids(a.id) == [sprint.id]

    def test_add_is_idempotent(self, make_sprint, ticket, project):
        sprint = make_sprint(project)
        assoc.add_ticket_to_sprint(sprint.id, ticket.id)
        assert assoc.add_ticket_to_sprint(sprint.id, ticket.id) == [ticket.id]

    def test_ticket_in_several_sprints(self, make_sprint, ticket, project):
        s1 = make_sprint(project, name="S1")
        s2 = make_sprint(project, start_offset_days=14, name="S2")
        assoc.add_ticket_to_sprint(s1.id, ticket.id)
        assoc.add_ticket_to_sprint(s2.id, ticket.id)
        assert assoc.ticket_sprint_ids(ticket.id) == [s1.id, s2.id]

    def test_remove(self, make_sprint, ticket, project):
        sprint = make_sprint(project)
        assoc.add_ticket_to_sprint(sprint.id, ticket.id)
        assert assoc.remove_ticket_from_sprint(sprint.id, ticket.id) == []
        assert assoc.ticket_sprint_ids(ticket.id) == []
        assert assoc.remove_ticket_from_sprint(sprint.id, ticket.id) == []

    def test_missing_endpoint(self, ticket):
        with pytest.raises(NotFoundError):
            assoc.add_ticket_to_sprint(98765, ticket.id)


class TestProjectUsers:
    def test_membership_both_directions(self, make_project, make_user):
        p1, p2 = make_project("P1"), make_project("P2")
        ann, bob = make_user("ann"), make_user("bob")

        assoc.add_user_to_project(p1.id, ann.id)
        assert assoc.add_user_to_project(p1.id, bob.id) == [ann.id, bob.id]
        assoc.add_user_to_project(p2.id, ann.id)

        assert assoc.user_project_ids(ann.id) == [p1.id, p2.id]
        assert assoc.remove_user_from_project(p1.id, ann.id) == [bob.id]
        assert assoc.user_project_ids(ann.id) == [p2.id]

    def test_missing_user(self, project):
        with pytest.raises(NotFoundError):
            assoc.add_user_to_project(project.id, 55555)


class TestProjectRoles:
    def test_assign_then_replace(self, project, make_user):
        dev = make_user("dev")
        role = assoc.assign_project_role(dev.id, project.id, "DEVELOPER")
        assert role.role_name == "DEVELOPER"

        assoc.assign_project_role(dev.id, project.id, "  ADMIN ")
        assert assoc.project_role(dev.id, project.id) == "ADMIN"
        assert [r.to_dict()["role_name"] for r in assoc.project_roles(project.id)] == ["ADMIN"]
        assert UserProjectRole.query.count() == 1

    def test_no_role(self, project, reporter):
        assert assoc.project_role(reporter.id, project.id) is None

    def test_blank_role_rejected(self, project, reporter):
        with pytest.raises(ValueError):
            assoc.assign_project_role(reporter.id, project.id, " ")


class TestLoaders:
    def test_load(self, ticket):
        loaded = assoc.load(Ticket, ticket.id)
        assert loaded.title == "Fix login"
        assert loaded.version == 0

    def test_load_missing(self):
        with pytest.raises(NotFoundError):
            assoc.load(Project, 4040)

    def test_load_many_keeps_requested_order(self, make_ticket, project, reporter):
        a = make_ticket(project, reporter, title="a")
        b = make_ticket(project, reporter, title="b")
        assert [t.title for t in assoc.load_many(Ticket, [b.id, a.id])] == ["b", "a"]
        assert assoc.load_many(Ticket, []) == []

    def test_load_many_missing(self, ticket):
        with pytest.raises(NotFoundError):
            assoc.load_many(Ticket, [ticket.id, 777])

    def test_load_sees_controller_writes(self, controller, ticket):
        assoc.load(Ticket, ticket.id)
        t, version = controller.read(Ticket, ticket.id)
        t.set(title="renamed")
        controller.write(t, version)
        assert assoc.load(Ticket, ticket.id).title == "renamed"
