"""Job lock model for at-most-once reminder delivery."""

from sqlalchemy import Column, Integer, String, UniqueConstraint

from .base import Base, UTCDateTime, utcnow

EMAIL_REMINDER_JOB = "email_reminder"


class JobLock(Base):
    """
    Time-bounded, uniquely keyed claim on delivering one block's reminder.

    The unique constraint on (job_type, block_id, user_id) is what makes
    acquisition atomic across scanner ticks and processes: acquiring is a plain
    INSERT, and a duplicate key means another worker already holds the claim.

    Lifecycle:
        1. Scanner inserts the row before dispatching
        2. On dispatch failure the row is deleted so the next tick can retry
        3. On success the row is left to expire (expires_at); the reaper or
           the next acquire for the same key removes it afterwards
    """

    __tablename__ = "job_locks"

    id = Column(Integer, primary_key=True, autoincrement=True)

    job_type = Column(String(50), nullable=False)
    block_id = Column(String(36), nullable=False)
    user_id = Column(String(255), nullable=False)

    locked_at = Column(UTCDateTime, default=utcnow, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("job_type", "block_id", "user_id", name="uq_job_locks_key"),
    )

    def __repr__(self):
        return (
            f"<JobLock(job_type={self.job_type}, block_id={self.block_id}, "
            f"user_id={self.user_id}, expires_at={self.expires_at})>"
        )
