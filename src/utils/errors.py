"""Exception hierarchy for study block writes and the reminder engine."""


class StudyBlockError(Exception):
    """Base class for errors surfaced to callers of the block API."""


class ValidationError(StudyBlockError):
    """A block write was rejected before anything was persisted."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.message = message
        self.field = field


class OverlapConflictError(ValidationError):
    """The requested interval overlaps another active block of the same user."""

    def __init__(self, message: str = "This time slot overlaps with an existing study block"):
        super().__init__(message, field="start_time")


class BlockNotFoundError(StudyBlockError):
    """No active block with that id belongs to the caller."""

    def __init__(self, block_id: str):
        super().__init__(f"Study block not found: {block_id}")
        self.block_id = block_id


class RepositoryError(StudyBlockError):
    """The primary store could not be reached or rejected a statement."""


class MirrorError(Exception):
    """A secondary store call failed.

    Raised by the secondary store client only; the sync coordinator converts it
    into a failed MirrorResult so it never reaches a primary-write caller.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
