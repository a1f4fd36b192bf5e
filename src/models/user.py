"""User model - contact identity for block owners."""

from sqlalchemy import Column, Integer, String

from .base import Base, UTCDateTime, utcnow


class User(Base):
    """User synced from the external auth provider on sign-in.

    ``external_id`` is the identity stored as ``StudyBlock.owner_id``.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        """Convert user to dictionary for API responses."""
        return {
            "id": self.id,
            "external_id": self.external_id,
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User(external_id={self.external_id}, email={self.email})>"
