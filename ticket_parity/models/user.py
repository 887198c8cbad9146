"""User: independently created root entity, many-to-many with Project."""

from ticket_parity.models import ID_TYPE, db, iso


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(ID_TYPE, primary_key=True)
    username = db.Column(db.String(255), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)
    create_time = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "create_time": iso(self.create_time),
        }

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.username}>"
