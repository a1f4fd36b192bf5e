"""Overlap detection for a user's study blocks.

Intervals are half-open ``[start, end)``. Two blocks overlap when any of
these holds (new = candidate, existing = stored block):

    (a) new start falls inside existing       existing.start <= new.start < existing.end
    (b) new end falls inside existing         existing.start < new.end <= existing.end
    (c) new fully contains existing           new.start <= existing.start and existing.end <= new.end
    (d) existing fully contains new           existing.start <= new.start and new.end <= existing.end

A block ending exactly when another starts does not overlap it. The same four
clauses are used by the in-memory predicate and by the SQL filter so the two
can never disagree on an edge.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_

from src.utils.errors import OverlapConflictError

logger = logging.getLogger(__name__)


def intervals_overlap(
    new_start: datetime, new_end: datetime, existing_start: datetime, existing_end: datetime
) -> bool:
    """Return True if ``[new_start, new_end)`` overlaps ``[existing_start, existing_end)``."""
    return (
        (existing_start <= new_start and existing_end > new_start)
        or (existing_start < new_end and existing_end >= new_end)
        or (existing_start >= new_start and existing_end <= new_end)
        or (existing_start <= new_start and existing_end >= new_end)
    )


def overlap_filter(start_column, end_column, new_start: datetime, new_end: datetime):
    """SQLAlchemy expression equivalent to :func:`intervals_overlap`.

    Args:
        start_column: Column holding the existing block's start
        end_column: Column holding the existing block's end
        new_start: Candidate start
        new_end: Candidate end
    """
    return or_(
        and_(start_column <= new_start, end_column > new_start),
        and_(start_column < new_end, end_column >= new_end),
        and_(start_column >= new_start, end_column <= new_end),
        and_(start_column <= new_start, end_column >= new_end),
    )


class OverlapValidator:
    """Checks a candidate interval against a user's active blocks."""

    def __init__(self, repository):
        """
        Args:
            repository: Object exposing ``find_overlapping(user_id, start, end, exclude_id)``
        """
        self.repository = repository

    def overlaps(
        self,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: Optional[str] = None,
    ) -> bool:
        return self.repository.find_overlapping(user_id, start_time, end_time, exclude_id)

    def ensure_no_overlap(
        self,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        """Raise OverlapConflictError if the interval collides with an active block."""
        if self.overlaps(user_id, start_time, end_time, exclude_id):
            logger.info(
                f"Rejected overlapping block for user {user_id}: "
                f"{start_time.isoformat()} - {end_time.isoformat()}"
            )
            raise OverlapConflictError()
