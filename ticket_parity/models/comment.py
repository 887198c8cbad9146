"""Comment: discussion entry on a ticket; owned by the ticket."""

from ticket_parity.models import ID_TYPE, VersionedMixin, db, iso
from ticket_parity.models.policy import fk


class Comment(VersionedMixin, db.Model):
    __tablename__ = "comments"

    id = db.Column(ID_TYPE, primary_key=True)
    content = db.Column(db.Text, nullable=False)
    ticket_id = db.Column(ID_TYPE, fk("comment.ticket"), nullable=False, index=True)
    commenter_id = db.Column(ID_TYPE, fk("comment.commenter"), nullable=False, index=True)
    create_time = db.Column(db.DateTime(timezone=True), nullable=False)
    update_time = db.Column(db.DateTime(timezone=True), nullable=True)

    def content_preview(self, max_length: int = 80):
        if self.content is None:
            return None
        if len(self.content) <= max_length:
            return self.content
        return self.content[:max_length] + "..."

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "ticket_id": self.ticket_id,
            "commenter_id": self.commenter_id,
            "create_time": iso(self.create_time),
            "update_time": iso(self.update_time),
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<Comment {self.id} ticket={self.ticket_id}>"
