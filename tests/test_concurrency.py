"""
Tests for the optimistic concurrency controller.

Covers:
    - create stamps timestamps from the clock and starts at version 0
    - read / set / write cycle and aggregate states
    - stale writes raise VersionConflict and persist nothing
    - N racing writers from one version: exactly one wins
    - discard, protected fields, deleted rows
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from ticket_parity.core.exceptions import NotFoundError, VersionConflict
from ticket_parity.models.comment import Comment
from ticket_parity.models.project import Project
from ticket_parity.models.ticket import Ticket
from ticket_parity.services.concurrency import AggregateState, ConcurrencyController
from ticket_parity.services.integrity_policy import IntegrityPolicyEngine


class TestCreateAndRead:
    def test_versioned_row_starts_at_zero(self, ticket):
        assert ticket.version == 0
        assert ticket.state is AggregateState.CLEAN

    def test_create_stamps_both_timestamps_from_clock(self, controller, ticket, t0):
        fresh, _ = controller.read(Ticket, ticket.id)
        assert fresh.create_time.replace(tzinfo=None) == t0.replace(tzinfo=None)
        assert fresh.update_time.replace(tzinfo=None) == t0.replace(tzinfo=None)

    def test_create_defaults(self, ticket):
        assert ticket.status == "OPEN"
        assert ticket.priority == "MEDIUM"
        assert ticket.meta == {}

    def test_create_rejects_stamped_fields(self, controller, project, reporter):
        with pytest.raises(AttributeError):
            controller.create(Ticket, title="x", project_id=project.id,
                              reporter_id=reporter.id, version=5)

    def test_create_rejects_unknown_fields(self, controller, project):
        with pytest.raises(AttributeError):
            controller.create(Project, name="Zeus", colour="red")

    def test_unversioned_root_has_no_version(self, controller, project):
        fresh, version = controller.read(Project, project.id)
        assert version is None
        assert fresh.name == "Apollo"

    def test_read_missing_row(self, controller):
        with pytest.raises(NotFoundError):
            controller.read(Ticket, 999_999)


class TestWrite:
    def test_write_increments_version_by_one(self, controller, ticket):
        t, version = controller.read(Ticket, ticket.id)
        t.set(status="IN_PROGRESS")
        assert t.state is AggregateState.DIRTY

        new_version = controller.write(t, version)

        assert new_version == version + 1
        assert t.state is AggregateState.COMMITTED
        assert t.version == new_version
        stored, stored_version = controller.read(Ticket, ticket.id)
        assert stored_version == 1
        assert stored.status == "IN_PROGRESS"

    def test_consecutive_writes(self, controller, ticket):
        t, _ = controller.read(Ticket, ticket.id)
        for expected, title in enumerate(["a", "b", "c"]):
            t.set(title=title)
            assert controller.write(t) == expected + 1
        assert controller.read(Ticket, ticket.id)[1] == 3

    def test_update_time_follows_clock(self, controller, fixed_clock, ticket, t0):
        fixed_clock.advance(timedelta(hours=2))
        t, version = controller.read(Ticket, ticket.id)
        t.set(priority="HIGH")
        controller.write(t, version)

        stored, _ = controller.read(Ticket, ticket.id)
        later = (t0 + timedelta(hours=2)).replace(tzinfo=None)
        assert stored.update_time.replace(tzinfo=None) == later
        assert stored.create_time.replace(tzinfo=None) == t0.replace(tzinfo=None)

    def test_stale_write_conflicts_and_persists_nothing(self, controller, ticket):
        first, v0 = controller.read(Ticket, ticket.id)
        second, _ = controller.read(Ticket, ticket.id)

        first.set(title="first")
        controller.write(first, v0)

        second.set(title="second", priority="CRITICAL")
        with pytest.raises(VersionConflict) as exc_info:
            controller.write(second, v0)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1
        assert second.state is AggregateState.CONFLICTED
        stored, version = controller.read(Ticket, ticket.id)
        assert (stored.title, stored.priority, version) == ("first", "MEDIUM", 1)

    def test_explicit_expected_version_mismatch(self, controller, ticket):
        t, _ = controller.read(Ticket, ticket.id)
        t.set(title="nope")
        with pytest.raises(VersionConflict):
            controller.write(t, expected_version=7)
        assert controller.read(Ticket, ticket.id)[0].title == "Fix login"

    def test_conflicted_aggregate_refuses_further_changes(self, controller, ticket):
        winner, v0 = controller.read(Ticket, ticket.id)
        loser, _ = controller.read(Ticket, ticket.id)
        winner.set(title="w")
        controller.write(winner, v0)
        loser.set(title="l")
        with pytest.raises(VersionConflict):
            controller.write(loser, v0)

        with pytest.raises(RuntimeError):
            loser.set(title="again")
        with pytest.raises(VersionConflict):
            controller.write(loser)

    def test_metadata_round_trip(self, controller, ticket):
        t, version = controller.read(Ticket, ticket.id)
        meta = {"labels": ["auth", "p1"], "estimate": {"points": 3, "confidence": 0.8}, "blocked": False}
        t.set(meta=meta)
        controller.write(t, version)
        assert controller.read(Ticket, ticket.id)[0].meta == meta

    def test_write_after_delete_is_not_found(self, controller, ticket):
        t, version = controller.read(Ticket, ticket.id)
        IntegrityPolicyEngine().delete(Ticket, ticket.id)
        t.set(title="ghost")
        with pytest.raises(NotFoundError):
            controller.write(t, version)

    def test_unversioned_model_cannot_be_written(self, controller, project):
        p, _ = controller.read(Project, project.id)
        p.set(name="Artemis")
        with pytest.raises(TypeError):
            controller.write(p, 0)

    def test_comment_is_versioned_too(self, controller, ticket, reporter):
        comment = controller.create(Comment, content="Looks good", ticket_id=ticket.id,
                                    commenter_id=reporter.id)
        comment.set(content="Looks good to me")
        assert controller.write(comment, 0) == 1


class TestAggregate:
    def test_protected_fields_are_not_settable(self, ticket):
        for field in ("id", "version", "create_time", "update_time"):
            with pytest.raises(AttributeError):
                ticket.set(**{field: 1})

    def test_unknown_field(self, ticket):
        with pytest.raises(AttributeError):
            ticket.set(colour="red")

    def test_pending_values_shadow_stored_values(self, ticket):
        ticket.set(title="draft")
        assert ticket.title == "draft"
        assert ticket.changes == {"title": "draft"}
        assert ticket.as_dict()["title"] == "draft"

    def test_discard_persists_nothing(self, controller, ticket):
        t, version = controller.read(Ticket, ticket.id)
        t.set(title="abandoned")
        t.discard()

        assert t.state is AggregateState.CLEAN
        assert t.title == "Fix login"
        stored, stored_version = controller.read(Ticket, ticket.id)
        assert (stored.title, stored_version) == ("Fix login", version)


class TestRacingWriters:
    WRITERS = 8

    def test_exactly_one_writer_wins(self, app, fixed_clock, ticket):
        barrier = threading.Barrier(self.WRITERS, timeout=30)

        def attempt(n):
            with app.app_context():
                controller = ConcurrencyController(clock=fixed_clock)
                t, version = controller.read(Ticket, ticket.id)
                barrier.wait()
                t.set(title=f"writer {n}")
                try:
                    return controller.write(t, version)
                except VersionConflict:
                    return "conflict"

        with ThreadPoolExecutor(max_workers=self.WRITERS) as pool:
            outcomes = list(pool.map(attempt, range(self.WRITERS)))

        assert outcomes.count(1) == 1
        assert outcomes.count("conflict") == self.WRITERS - 1
        stored, version = ConcurrencyController(clock=fixed_clock).read(Ticket, ticket.id)
        assert version == 1
        assert stored.title.startswith("writer ")

    def test_sequential_writers_from_same_version(self, controller, ticket):
        copies = [controller.read(Ticket, ticket.id)[0] for _ in range(4)]
        results = []
        for n, copy in enumerate(copies):
            copy.set(description=f"attempt {n}")
            try:
                results.append(controller.write(copy, 0))
            except VersionConflict:
                results.append("conflict")
        assert results == [1, "conflict", "conflict", "conflict"]
