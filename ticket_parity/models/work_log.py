"""WorkLog: time a user spent on a ticket; owned by the ticket."""

from ticket_parity.models import ID_TYPE, VersionedMixin, db, iso
from ticket_parity.models.policy import fk


class WorkLog(VersionedMixin, db.Model):
    __tablename__ = "work_logs"
    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_work_logs_start_before_end"),
        db.CheckConstraint("hours_spent >= 0", name="ck_work_logs_hours_non_negative"),
        db.Index("ix_work_logs_user_start", "user_id", "start_time"),
    )

    id = db.Column(ID_TYPE, primary_key=True)
    ticket_id = db.Column(ID_TYPE, fk("work_log.ticket"), nullable=False, index=True)
    user_id = db.Column(ID_TYPE, fk("work_log.user"), nullable=False)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    description = db.Column(db.Text, nullable=False)
    hours_spent = db.Column(db.Float, nullable=False)
    create_time = db.Column(db.DateTime(timezone=True), nullable=False)
    update_time = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "user_id": self.user_id,
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
            "description": self.description,
            "hours_spent": self.hours_spent,
            "create_time": iso(self.create_time),
            "update_time": iso(self.update_time),
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<WorkLog {self.id} ticket={self.ticket_id} user={self.user_id}>"
