"""
Shared pytest fixtures for the ticket-parity test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context + table reset (autouse)
    - fixed_clock: FixedClock installed as the default clock
    - controller: ConcurrencyController bound to fixed_clock
    - make_user / make_project / make_ticket / make_sprint: factory helpers

Set TEST_DATABASE_URL to run the suite against PostgreSQL or CockroachDB
instead of the temp-dir SQLite file.
"""

from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from ticket_parity import create_app
from ticket_parity.core.clock import FixedClock, install_clock
from ticket_parity.models import db as _db
from ticket_parity.models.project import Project
from ticket_parity.models.sprint import Sprint
from ticket_parity.models.ticket import Ticket
from ticket_parity.models.user import User
from ticket_parity.services.concurrency import ConcurrencyController

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Start from an empty schema, drop everything at the end."""
    with app.app_context():
        _db.drop_all()
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, recreate tables afterwards."""
    with app.app_context():
        _db.create_all()
        yield
        _db.session.rollback()
        # Self-referencing RESTRICT rows would block the implicit DELETE of DROP TABLE
        _db.session.execute(sa.update(Ticket.__table__).values(dependent_on_id=None))
        _db.session.commit()
        _db.session.remove()
        _db.drop_all()


# ── Clock & controller ───────────────────────────────────────────────────


@pytest.fixture()
def fixed_clock():
    clock = FixedClock(T0)
    previous = install_clock(clock)
    yield clock
    install_clock(previous)


@pytest.fixture()
def controller(fixed_clock):
    return ConcurrencyController(clock=fixed_clock)


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user(controller):
    counter = {"n": 0}

    def _make(username=None, **fields):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        fields.setdefault("email", f"{username}@example.com")
        return controller.create(User, username=username, **fields)

    return _make


@pytest.fixture()
def make_project(controller):
    counter = {"n": 0}

    def _make(name=None, **fields):
        counter["n"] += 1
        return controller.create(Project, name=name or f"Project {counter['n']}", **fields)

    return _make


@pytest.fixture()
def make_ticket(controller):
    def _make(project, reporter, title="Ticket", **fields):
        return controller.create(
            Ticket, title=title, project_id=project.id, reporter_id=reporter.id, **fields,
        )

    return _make


@pytest.fixture()
def make_sprint(controller):
    def _make(project, start_offset_days=0, length_days=14, name="Sprint", **fields):
        start = T0 + timedelta(days=start_offset_days)
        return controller.create(
            Sprint, name=name, project_id=project.id,
            start_date=start, end_date=start + timedelta(days=length_days), **fields,
        )

    return _make


@pytest.fixture()
def project(make_project):
    return make_project("Apollo")


@pytest.fixture()
def reporter(make_user):
    return make_user("reporter")


@pytest.fixture()
def ticket(make_ticket, project, reporter):
    return make_ticket(project, reporter, title="Fix login", estimated_hours=4.0)


@pytest.fixture()
def t0():
    """The instant ``fixed_clock`` starts at."""
    return T0
