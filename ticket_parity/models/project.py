"""Project: independently created root entity that owns tickets and sprints."""

from ticket_parity.models import ID_TYPE, db, iso


class Project(db.Model):
    """A named container of tickets and sprints."""

    __tablename__ = "projects"

    id = db.Column(ID_TYPE, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    create_time = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "create_time": iso(self.create_time),
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"
