"""Tests for overlap detection."""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from src.managers.block_repository import BlockRepository
from src.services.overlap_validator import OverlapValidator, intervals_overlap
from src.utils.errors import OverlapConflictError


def at(hour, minute=0):
    return datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)


class TestIntervalsOverlap:
    """Test the in-memory overlap predicate."""

    @pytest.mark.parametrize("new, existing", [
        ((at(10), at(11)), (at(9, 30), at(10, 30))),   # new start inside existing
        ((at(10), at(11)), (at(10, 30), at(11, 30))),  # new end inside existing
        ((at(10), at(12)), (at(10, 30), at(11))),      # new contains existing
        ((at(10, 15), at(10, 45)), (at(10), at(11))),  # existing contains new
        ((at(10), at(11)), (at(10), at(11))),          # identical
    ])
    def test_overlapping_pairs(self, new, existing):
        """Each overlap clause is detected, in both directions."""
        assert intervals_overlap(*new, *existing) is True
        assert intervals_overlap(*existing, *new) is True

    def test_touching_intervals_do_not_overlap(self):
        """A block ending when another starts is not a conflict."""
        assert intervals_overlap(at(10), at(11), at(11), at(12)) is False
        assert intervals_overlap(at(11), at(12), at(10), at(11)) is False

    def test_disjoint_intervals(self):
        """Separated blocks never overlap."""
        assert intervals_overlap(at(8), at(9), at(10), at(11)) is False


class TestOverlapValidator:
    """Test the validator against the primary store."""

    @pytest.fixture
    def repository(self, session_factory, coordinator, reminder_config, clock):
        return BlockRepository(session_factory, coordinator=coordinator,
                               reminder_config=reminder_config, clock=clock)

    def test_detects_overlap_in_database(self, repository, make_block, clock):
        """An active block of the same user conflicts."""
        block = make_block(starts_in=timedelta(hours=2), duration=timedelta(hours=1))

        assert repository.validator.overlaps(
            "user_123", block.start_time + timedelta(minutes=30),
            block.end_time + timedelta(minutes=30)
        ) is True

    def test_touching_block_allowed_in_database(self, repository, make_block):
        """SQL filter agrees with the predicate on touching edges."""
        block = make_block(starts_in=timedelta(hours=2), duration=timedelta(hours=1))

        assert repository.validator.overlaps(
            "user_123", block.end_time, block.end_time + timedelta(hours=1)
        ) is False
        assert repository.validator.overlaps(
            "user_123", block.start_time - timedelta(hours=1), block.start_time
        ) is False

    def test_other_users_blocks_ignored(self, repository, make_block):
        """Overlap is scoped to one user."""
        block = make_block(owner_id="someone_else", starts_in=timedelta(hours=2))

        assert repository.validator.overlaps("user_123", block.start_time, block.end_time) is False

    def test_inactive_blocks_ignored(self, repository, make_block):
        """Soft-deleted blocks no longer occupy their slot."""
        block = make_block(starts_in=timedelta(hours=2), is_active=False)

        assert repository.validator.overlaps("user_123", block.start_time, block.end_time) is False

    def test_exclude_id_skips_block_being_updated(self, repository, make_block):
        """A block never conflicts with itself."""
        block = make_block(starts_in=timedelta(hours=2))

        assert repository.validator.overlaps(
            "user_123", block.start_time, block.end_time, exclude_id=block.id
        ) is False

    def test_ensure_no_overlap_raises(self):
        """ensure_no_overlap turns a hit into OverlapConflictError."""
        repo = Mock()
        repo.find_overlapping.return_value = True
        validator = OverlapValidator(repo)

        with pytest.raises(OverlapConflictError) as exc_info:
            validator.ensure_no_overlap("user_123", at(10), at(11))

        assert exc_info.value.field == "start_time"
        assert "overlaps" in exc_info.value.message
        repo.find_overlapping.assert_called_once_with("user_123", at(10), at(11), None)
