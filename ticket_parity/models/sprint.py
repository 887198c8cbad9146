"""Sprint: time-boxed iteration belonging to one Project."""

from ticket_parity.models import ID_TYPE, VersionedMixin, db, iso
from ticket_parity.models.policy import fk


class Sprint(VersionedMixin, db.Model):
    """An iteration ``[start_date, end_date)`` within a project.

    Sprints of one project are expected not to overlap, but nothing in the
    schema forbids it; see ``TemporalValidator.find_overlapping_sprints``.
    """

    __tablename__ = "sprints"
    __table_args__ = (
        db.CheckConstraint("start_date < end_date", name="ck_sprints_start_before_end"),
    )

    id = db.Column(ID_TYPE, primary_key=True)
    name = db.Column(db.String(255), nullable=False, comment="e.g. Sprint 1")
    description = db.Column(db.Text, nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    project_id = db.Column(ID_TYPE, fk("sprint.project"), nullable=False, index=True)
    create_time = db.Column(db.DateTime(timezone=True), nullable=False)
    update_time = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "project_id": self.project_id,
            "create_time": iso(self.create_time),
            "update_time": iso(self.update_time),
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<Sprint {self.id}: {self.name}>"
