"""
Join tables for the two many-to-many relationships, plus the optional
per-pair role record.

Neither side owns the pair: rows are inserted and removed explicitly by
``ticket_parity.services.association_service`` and disappear with either
endpoint through the CASCADE actions declared in the policy table.
"""

from ticket_parity.models import ID_TYPE, db
from ticket_parity.models.policy import fk

sprint_tickets = db.Table(
    "sprint_tickets",
    db.Column("sprint_id", ID_TYPE, fk("sprint_ticket.sprint"), primary_key=True),
    db.Column("ticket_id", ID_TYPE, fk("sprint_ticket.ticket"), primary_key=True),
)

user_projects = db.Table(
    "user_projects",
    db.Column("user_id", ID_TYPE, fk("user_project.user"), primary_key=True),
    db.Column("project_id", ID_TYPE, fk("user_project.project"), primary_key=True),
)


class UserProjectRole(db.Model):
    """Role a user holds within one project (at most one per pair)."""

    __tablename__ = "user_project_roles"
    __table_args__ = (
        db.UniqueConstraint("user_id", "project_id", name="uq_user_project_roles_pair"),
    )

    id = db.Column(ID_TYPE, primary_key=True)
    user_id = db.Column(ID_TYPE, fk("user_project_role.user"), nullable=False, index=True)
    project_id = db.Column(ID_TYPE, fk("user_project_role.project"), nullable=False, index=True)
    role_name = db.Column(db.String(100), nullable=False, comment="e.g. ADMIN | DEVELOPER | VIEWER")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "project_id": self.project_id,
            "role_name": self.role_name,
        }

    def __repr__(self) -> str:
        return f"<UserProjectRole user={self.user_id} project={self.project_id}: {self.role_name}>"
