"""
Referential policy table: one entry per directed relationship.

The table is the single source of truth for what happens to dependents when
a referenced row is deleted or re-keyed:

  - The models build their ``ForeignKey(ondelete=..., onupdate=...)`` clauses
    from it via ``fk()``, so every backend enforces the same actions.
  - ``IntegrityPolicyEngine`` consults it at delete / identity-change time
    to pre-check RESTRICT dependents and report what a delete will touch.

Usage:
    from ticket_parity.models.policy import POLICIES, fk

    assignee_id = db.Column(ID_TYPE, fk("ticket.assignee"), nullable=True)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from ticket_parity.models import db


class Policy(str, enum.Enum):
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    RESTRICT = "RESTRICT"


@dataclass(frozen=True)
class Relationship:
    """A child column referencing a parent table's ``id``."""

    name: str
    child_table: str
    child_column: str
    parent_table: str
    on_delete: Policy
    on_update: Policy = Policy.RESTRICT
    nullable: bool = False

    def __post_init__(self) -> None:
        if Policy.SET_NULL in (self.on_delete, self.on_update) and not self.nullable:
            raise ValueError(
                f"{self.name}: SET NULL requires a nullable column "
                f"({self.child_table}.{self.child_column} is NOT NULL)"
            )

    @property
    def is_self_reference(self) -> bool:
        return self.child_table == self.parent_table


def build_policy_table(relationships) -> dict[str, Relationship]:
    table: dict[str, Relationship] = {}
    for rel in relationships:
        if rel.name in table:
            raise ValueError(f"Duplicate relationship {rel.name!r}")
        table[rel.name] = rel
    return table


POLICIES: dict[str, Relationship] = build_policy_table([
    # tickets
    Relationship("ticket.project", "tickets", "project_id", "projects", Policy.RESTRICT),
    Relationship("ticket.reporter", "tickets", "reporter_id", "users", Policy.RESTRICT),
    Relationship("ticket.assignee", "tickets", "assignee_id", "users", Policy.SET_NULL, nullable=True),
    Relationship("ticket.dependent_on", "tickets", "dependent_on_id", "tickets", Policy.RESTRICT, nullable=True),
    # work logs / comments are owned by their ticket
    Relationship("work_log.ticket", "work_logs", "ticket_id", "tickets", Policy.CASCADE),
    Relationship("work_log.user", "work_logs", "user_id", "users", Policy.RESTRICT),
    Relationship("comment.ticket", "comments", "ticket_id", "tickets", Policy.CASCADE),
    Relationship("comment.commenter", "comments", "commenter_id", "users", Policy.RESTRICT),
    # sprints follow their project on delete and on re-key
    Relationship("sprint.project", "sprints", "project_id", "projects", Policy.CASCADE, Policy.CASCADE),
    # pure join tables
    Relationship("sprint_ticket.sprint", "sprint_tickets", "sprint_id", "sprints", Policy.CASCADE, Policy.CASCADE),
    Relationship("sprint_ticket.ticket", "sprint_tickets", "ticket_id", "tickets", Policy.CASCADE, Policy.CASCADE),
    Relationship("user_project.user", "user_projects", "user_id", "users", Policy.CASCADE, Policy.CASCADE),
    Relationship("user_project.project", "user_projects", "project_id", "projects", Policy.CASCADE, Policy.CASCADE),
    Relationship("user_project_role.user", "user_project_roles", "user_id", "users", Policy.CASCADE, Policy.CASCADE),
    Relationship("user_project_role.project", "user_project_roles", "project_id", "projects", Policy.CASCADE, Policy.CASCADE),
])


def fk(name: str) -> db.ForeignKey:
    """Build the ForeignKey for a declared relationship."""
    rel = POLICIES[name]
    return db.ForeignKey(
        f"{rel.parent_table}.id",
        name=f"fk_{rel.child_table}_{rel.child_column}",
        ondelete=rel.on_delete.value,
        onupdate=rel.on_update.value,
    )


def referencing(parent_table: str) -> list[Relationship]:
    """All relationships whose parent is ``parent_table``, in declaration order."""
    return [rel for rel in POLICIES.values() if rel.parent_table == parent_table]
