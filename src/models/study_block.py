"""Study block model - the primary (authoritative) record of a scheduled block."""

import uuid

from sqlalchemy import Column, String, Boolean, Index, CheckConstraint

from .base import Base, UTCDateTime, utcnow

TITLE_MAX_LENGTH = 200


class StudyBlock(Base):
    """A user-scheduled interval eligible for exactly one email reminder.

    ``reminder_sent`` only moves from False to True, except when an update
    changes the block's times. ``is_active`` is the soft-delete marker; every
    query the engine runs filters on it.
    """

    __tablename__ = "study_blocks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # External identity of the owning user (shared with the secondary store)
    owner_id = Column(String(255), nullable=False, index=True)

    title = Column(String(TITLE_MAX_LENGTH), nullable=False)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    end_time = Column(UTCDateTime, nullable=False)

    reminder_sent = Column(Boolean, default=False, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_study_blocks_time_order"),
        # Scanner query: start_time range + unsent + active
        Index("idx_study_blocks_scan", "start_time", "reminder_sent", "is_active"),
        # Overlap query: per-user active intervals
        Index("idx_study_blocks_overlap", "owner_id", "is_active", "start_time", "end_time"),
    )

    def to_dict(self):
        """Convert to dictionary for API responses and logging."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "reminder_sent": self.reminder_sent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return (
            f"<StudyBlock(id={self.id}, owner_id={self.owner_id}, "
            f"start_time={self.start_time}, reminder_sent={self.reminder_sent})>"
        )
