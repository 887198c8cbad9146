"""
Referential integrity policy engine.

Deletes and identity changes are driven by ``POLICIES``:

    CASCADE   dependents follow (deleted / re-keyed) by the engine's FK action
    SET NULL  the referencing column is cleared by the engine's FK action
    RESTRICT  the operation is refused while any dependent exists

RESTRICT dependents are counted up-front so the caller gets an
``IntegrityViolation`` naming the relationship, not a driver-specific FK
error. The actual mutation is a single DELETE / UPDATE statement inside a
savepoint, leaving CASCADE and SET NULL to the database so they are applied
atomically with the parent row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError

from ticket_parity.core.exceptions import IntegrityViolation, NotFoundError
from ticket_parity.models import db
from ticket_parity.models.policy import Policy, referencing
from ticket_parity.models.ticket import Ticket
from ticket_parity.utils.errors import normalize_db_error
from ticket_parity.utils.helpers import begin_write

logger = logging.getLogger(__name__)


@dataclass
class DeletePlan:
    """Direct dependents a delete of ``table``/``row_id`` would touch, per relationship."""

    table: str
    row_id: int
    cascade: dict[str, int] = field(default_factory=dict)
    set_null: dict[str, int] = field(default_factory=dict)
    restricted: dict[str, int] = field(default_factory=dict)

    @property
    def blocked(self) -> bool:
        return bool(self.restricted)

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "id": self.row_id,
            "cascade": dict(self.cascade),
            "set_null": dict(self.set_null),
            "restricted": dict(self.restricted),
        }


class IntegrityPolicyEngine:
    """Applies the policy table to deletes, identity changes and writes."""

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # ── Helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def _child_column(rel) -> sa.Column:
        return db.metadata.tables[rel.child_table].c[rel.child_column]

    def _count_dependents(self, rel, row_id) -> int:
        column = self._child_column(rel)
        stmt = sa.select(sa.func.count()).select_from(column.table).where(column == row_id)
        if rel.is_self_reference:
            stmt = stmt.where(column.table.c.id != row_id)
        return self.session.execute(stmt).scalar_one()

    def _exists(self, table, row_id) -> bool:
        stmt = sa.select(table.c.id).where(table.c.id == row_id)
        return self.session.execute(stmt).first() is not None

    # ── Delete ──────────────────────────────────────────────────────────

    def plan_delete(self, model, row_id) -> DeletePlan:
        """Count the direct dependents of a row under each relationship policy."""
        table = model.__table__
        if not self._exists(table, row_id):
            raise NotFoundError(model.__name__, row_id)

        plan = DeletePlan(table=table.name, row_id=row_id)
        buckets = {
            Policy.CASCADE: plan.cascade,
            Policy.SET_NULL: plan.set_null,
            Policy.RESTRICT: plan.restricted,
        }
        for rel in referencing(table.name):
            count = self._count_dependents(rel, row_id)
            if count:
                buckets[rel.on_delete][rel.name] = count
        return plan

    def delete(self, model, row_id, *, commit: bool = True) -> DeletePlan:
        """Delete one row, applying every referencing relationship's on-delete policy.

        Raises ``IntegrityViolation`` (nothing deleted) when a RESTRICT
        dependent exists, ``NotFoundError`` when the row is missing.
        """
        table = model.__table__
        try:
            begin_write(self.session)
            with self.session.begin_nested():
                plan = self.plan_delete(model, row_id)
                if plan.blocked:
                    rel_name, count = next(iter(plan.restricted.items()))
                    raise IntegrityViolation(
                        f"Cannot delete {model.__name__} id={row_id}: "
                        f"{count} dependent row(s) via {rel_name} (RESTRICT)",
                        relationship=rel_name,
                        details=dict(plan.restricted),
                    )
                self.session.execute(sa.delete(table).where(table.c.id == row_id))
            if commit:
                self.session.commit()
        except (IntegrityViolation, NotFoundError) as exc:
            if commit:
                self.session.rollback()
            logger.warning("Delete of %s id=%s refused: %s", model.__name__, row_id, exc,
                           extra={"table": table.name, "event_type": "delete_refused"})
            raise
        except DBAPIError as exc:
            self.session.rollback()
            normalized = normalize_db_error(exc)
            logger.warning("Delete of %s id=%s failed: %s", model.__name__, row_id, normalized,
                           extra={"table": table.name, "event_type": "delete_failed"})
            if normalized is exc:
                raise
            raise normalized from exc

        self.session.expire_all()
        logger.info("Deleted %s id=%s (cascade=%s, set_null=%s)",
                    model.__name__, row_id, plan.cascade, plan.set_null,
                    extra={"table": table.name, "event_type": "delete"})
        return plan

    # ── Identity change ─────────────────────────────────────────────────

    def change_identity(self, model, old_id, new_id, *, commit: bool = True) -> dict[str, int]:
        """Re-key a row; on-update CASCADE dependents follow in the same statement.

        Returns the number of dependents re-pointed per relationship.
        """
        table = model.__table__
        followed: dict[str, int] = {}
        try:
            begin_write(self.session)
            with self.session.begin_nested():
                if not self._exists(table, old_id):
                    raise NotFoundError(model.__name__, old_id)
                for rel in referencing(table.name):
                    count = self._count_dependents(rel, old_id)
                    if not count:
                        continue
                    if rel.on_update is not Policy.CASCADE:
                        raise IntegrityViolation(
                            f"Cannot change identity of {model.__name__} id={old_id}: "
                            f"{count} dependent row(s) via {rel.name} ({rel.on_update.value})",
                            relationship=rel.name,
                            details={rel.name: count},
                        )
                    followed[rel.name] = count
                self.session.execute(
                    sa.update(table).where(table.c.id == old_id).values({table.c.id: new_id})
                )
            if commit:
                self.session.commit()
        except (IntegrityViolation, NotFoundError) as exc:
            if commit:
                self.session.rollback()
            logger.warning("Identity change of %s %s -> %s refused: %s", model.__name__, old_id, new_id, exc,
                           extra={"table": table.name, "event_type": "identity_change_refused"})
            raise
        except DBAPIError as exc:
            self.session.rollback()
            normalized = normalize_db_error(exc)
            logger.warning("Identity change of %s %s -> %s failed: %s", model.__name__, old_id, new_id,
                           normalized, extra={"table": table.name, "event_type": "identity_change_failed"})
            if normalized is exc:
                raise
            raise normalized from exc

        self.session.expire_all()
        logger.info("Changed identity of %s %s -> %s (followed: %s)", model.__name__, old_id, new_id,
                    followed, extra={"table": table.name, "event_type": "identity_change"})
        return followed

    # ── Write-time reference checks ─────────────────────────────────────

    def check_write(self, aggregate, *, lock: bool = False) -> None:
        """Reject a ticket whose ``dependent_on`` chain would lead back to itself.

        With ``lock`` every chain row read is selected FOR UPDATE.
        """
        model = getattr(aggregate, "model", None) or type(aggregate)
        if model is not Ticket:
            return
        target = getattr(aggregate, "dependent_on_id", None)
        if target is None:
            return
        ticket_id = getattr(aggregate, "id", None)
        if ticket_id is not None and target == ticket_id:
            raise self._cycle(ticket_id, [ticket_id])

        tickets = Ticket.__table__
        chain = [target]
        seen = {target}
        current = target
        while current is not None:
            stmt = sa.select(tickets.c.dependent_on_id).where(tickets.c.id == current)
            if lock:
                stmt = stmt.with_for_update()
            current = self.session.execute(stmt).scalar()
            if current is None or current in seen:
                break
            chain.append(current)
            if ticket_id is not None and current == ticket_id:
                raise self._cycle(ticket_id, chain)
            seen.add(current)

    @staticmethod
    def _cycle(ticket_id, chain) -> IntegrityViolation:
        path = " -> ".join(str(i) for i in [ticket_id, *chain])
        logger.warning("Rejected dependency cycle %s", path,
                       extra={"aggregate": "Ticket", "aggregate_id": ticket_id, "event_type": "dependency_cycle"})
        return IntegrityViolation(
            f"Ticket id={ticket_id} cannot depend on itself (cycle {path})",
            relationship="ticket.dependent_on",
            details={"cycle": [ticket_id, *chain]},
        )

    def recheck_write(self, aggregate) -> None:
        """Repeat ``check_write`` after the row was updated, inside the same transaction.

        Two writers adding opposite edges (A -> B and B -> A) can both pass
        the pre-check. Walking again with the chain rows locked makes the
        later writer see the earlier one's committed edge; PostgreSQL-family
        engines may instead abort one of them as a deadlock, which the write
        path reports as ``VersionConflict``.
        """
        if "dependent_on_id" in getattr(aggregate, "changes", {}):
            self.check_write(aggregate, lock=True)
