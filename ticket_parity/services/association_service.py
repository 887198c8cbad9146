"""
Association service: explicit many-to-many mutations and on-demand loaders.

Join rows are inserted and deleted one statement at a time and every
mutation returns the refreshed membership list, so callers never rely on
in-memory collections staying in sync with the database:

    add_ticket_to_sprint(sprint_id, ticket_id)   -> [ticket ids in sprint]
    remove_ticket_from_sprint(...)               -> [ticket ids in sprint]
    add_user_to_project(project_id, user_id)     -> [user ids in project]
    remove_user_from_project(...)                -> [user ids in project]
    assign_project_role(user_id, project_id, r)  -> UserProjectRole

Adds are idempotent; removing a pair that does not exist is a no-op.
"""

import logging

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError

from ticket_parity.core.exceptions import NotFoundError
from ticket_parity.models import db
from ticket_parity.models.associations import UserProjectRole, sprint_tickets, user_projects
from ticket_parity.models.project import Project
from ticket_parity.models.sprint import Sprint
from ticket_parity.models.ticket import Ticket
from ticket_parity.models.user import User
from ticket_parity.utils.errors import normalize_db_error

logger = logging.getLogger(__name__)


def _require(model, row_id) -> None:
    table = model.__table__
    found = db.session.execute(sa.select(table.c.id).where(table.c.id == row_id)).first()
    if found is None:
        raise NotFoundError(model.__name__, row_id)


def _commit(relationship: str) -> None:
    try:
        db.session.commit()
    except DBAPIError as exc:
        db.session.rollback()
        normalized = normalize_db_error(exc, relationship=relationship)
        logger.warning("Association change on %s failed: %s", relationship, normalized,
                       extra={"event_type": "association_failed"})
        if normalized is exc:
            raise
        raise normalized from exc


def _ids(column, where) -> list[int]:
    return list(db.session.execute(sa.select(column).where(where).order_by(column)).scalars())


# ═══════════════════════════════════════════════════════════════
# Sprint ↔ Ticket
# ═══════════════════════════════════════════════════════════════

def sprint_ticket_ids(sprint_id) -> list[int]:
    return _ids(sprint_tickets.c.ticket_id, sprint_tickets.c.sprint_id == sprint_id)


def ticket_sprint_ids(ticket_id) -> list[int]:
    return _ids(sprint_tickets.c.sprint_id, sprint_tickets.c.ticket_id == ticket_id)


def add_ticket_to_sprint(sprint_id, ticket_id) -> list[int]:
    """Put a ticket in a sprint; returns the sprint's ticket ids."""
    _require(Sprint, sprint_id)
    _require(Ticket, ticket_id)
    pair = sa.and_(sprint_tickets.c.sprint_id == sprint_id, sprint_tickets.c.ticket_id == ticket_id)
    if db.session.execute(sa.select(sprint_tickets.c.sprint_id).where(pair)).first() is None:
        db.session.execute(sa.insert(sprint_tickets).values(sprint_id=sprint_id, ticket_id=ticket_id))
        _commit("sprint_ticket")
        logger.info("Added ticket %s to sprint %s", ticket_id, sprint_id)
    return sprint_ticket_ids(sprint_id)


def remove_ticket_from_sprint(sprint_id, ticket_id) -> list[int]:
    db.session.execute(
        sa.delete(sprint_tickets).where(
            sprint_tickets.c.sprint_id == sprint_id, sprint_tickets.c.ticket_id == ticket_id,
        )
    )
    _commit("sprint_ticket")
    return sprint_ticket_ids(sprint_id)


# ═══════════════════════════════════════════════════════════════
# Project ↔ User
# ═══════════════════════════════════════════════════════════════

def project_user_ids(project_id) -> list[int]:
    return _ids(user_projects.c.user_id, user_projects.c.project_id == project_id)


def user_project_ids(user_id) -> list[int]:
    return _ids(user_projects.c.project_id, user_projects.c.user_id == user_id)


def add_user_to_project(project_id, user_id) -> list[int]:
    """Make a user a project member; returns the project's user ids."""
    _require(Project, project_id)
    _require(User, user_id)
    pair = sa.and_(user_projects.c.project_id == project_id, user_projects.c.user_id == user_id)
    if db.session.execute(sa.select(user_projects.c.user_id).where(pair)).first() is None:
        db.session.execute(sa.insert(user_projects).values(project_id=project_id, user_id=user_id))
        _commit("user_project")
        logger.info("Added user %s to project %s", user_id, project_id)
    return project_user_ids(project_id)


def remove_user_from_project(project_id, user_id) -> list[int]:
    db.session.execute(
        sa.delete(user_projects).where(
            user_projects.c.project_id == project_id, user_projects.c.user_id == user_id,
        )
    )
    _commit("user_project")
    return project_user_ids(project_id)


# ═══════════════════════════════════════════════════════════════
# Project roles
# ═══════════════════════════════════════════════════════════════

def assign_project_role(user_id, project_id, role_name: str) -> UserProjectRole:
    """Create or replace the role a user holds in a project."""
    if not role_name or not role_name.strip():
        raise ValueError("role_name is required")
    _require(User, user_id)
    _require(Project, project_id)

    role = db.session.execute(
        sa.select(UserProjectRole).where(
            UserProjectRole.user_id == user_id, UserProjectRole.project_id == project_id,
        )
    ).scalar_one_or_none()
    if role is None:
        role = UserProjectRole(user_id=user_id, project_id=project_id, role_name=role_name.strip())
        db.session.add(role)
    else:
        role.role_name = role_name.strip()
    _commit("user_project_role")
    logger.info("User %s is %s in project %s", user_id, role.role_name, project_id)
    return role


def project_role(user_id, project_id) -> str | None:
    return db.session.execute(
        sa.select(UserProjectRole.role_name).where(
            UserProjectRole.user_id == user_id, UserProjectRole.project_id == project_id,
        )
    ).scalar_one_or_none()


def project_roles(project_id) -> list[UserProjectRole]:
    return list(db.session.scalars(
        sa.select(UserProjectRole)
        .where(UserProjectRole.project_id == project_id)
        .order_by(UserProjectRole.user_id)
    ))


# ═══════════════════════════════════════════════════════════════
# Loaders
# ═══════════════════════════════════════════════════════════════

def load(model, row_id):
    """Fetch one ORM row fresh from the database."""
    obj = db.session.get(model, row_id, populate_existing=True)
    if obj is None:
        raise NotFoundError(model.__name__, row_id)
    return obj


def load_many(model, ids) -> list:
    """Fetch rows in the order of ``ids``; any missing id raises ``NotFoundError``."""
    ids = list(ids)
    if not ids:
        return []
    rows = db.session.scalars(
        sa.select(model).where(model.id.in_(ids)).execution_options(populate_existing=True)
    )
    by_id = {row.id: row for row in rows}
    missing = [i for i in ids if i not in by_id]
    if missing:
        raise NotFoundError(model.__name__, missing[0] if len(missing) == 1 else ", ".join(map(str, missing)))
    return [by_id[i] for i in ids]
