from __future__ import annotations

from ..extensions import db
from pharmamarket.time_utils import to_utc_z


class User(db.Model):
    """
    Marketplace actor (pharmacy buyer, pharmacy seller, or platform admin).

    Authentication and verification (GLN checks, documents) live outside this
    service; only the role is needed here to authorize state transitions.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)

    # buyer | seller | admin
    role = db.Column(db.String(16), nullable=False, default="buyer", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
