"""Best-effort propagation of block lifecycle changes to the secondary store.

The primary store is the source of truth. Every mirror call happens after the
primary commit and reports its outcome as a MirrorResult instead of raising,
so a secondary outage can never undo or block a primary write. There is no
background reconciliation: a record whose mirror failed stays stale until the
next mirrored write touches it (each mirror sends the full row, so that write
repairs it).

Ordering: calls are issued one at a time and carry the primary ``updated_at``
as a version. A call older than the last one issued for the same record is
dropped as STALE, so the secondary store observes changes in commit order.
"""

import enum
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from src.models import StudyBlock
from src.utils.errors import MirrorError

logger = logging.getLogger(__name__)

# Upper bound on remembered record versions; oldest entries are evicted first
MAX_TRACKED_VERSIONS = 10000


class MirrorStatus(enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    STALE = "stale"
    DISABLED = "disabled"


class MirrorOperation(enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REMINDER_SENT = "reminder_sent"


@dataclass
class MirrorResult:
    """Outcome of one mirror attempt."""

    status: MirrorStatus
    operation: MirrorOperation
    link_id: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (MirrorStatus.SUCCESS, MirrorStatus.DISABLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "operation": self.operation.value,
            "link_id": self.link_id,
            "error": self.error,
        }


def mirror_fields(block: StudyBlock) -> Dict[str, Any]:
    """Full mirror row for a block (secondary column names)."""
    return {
        "user_id": block.owner_id,
        "title": block.title,
        "start_time": block.start_time.isoformat(),
        "end_time": block.end_time.isoformat(),
        "reminder_sent": block.reminder_sent,
        "is_active": block.is_active,
        "updated_at": block.updated_at.isoformat() if block.updated_at else None,
    }


class SyncCoordinator:
    """Mirrors primary block writes into the secondary store."""

    def __init__(self, store=None, max_tracked: int = MAX_TRACKED_VERSIONS):
        """
        Args:
            store: Secondary store exposing ``upsert(link_id, fields)`` and
                ``delete(link_id)``; None disables mirroring
            max_tracked: Most record versions kept for stale detection
        """
        self.store = store
        self.max_tracked = max_tracked
        self._lock = threading.Lock()
        self._last_versions: "OrderedDict[str, datetime]" = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self.store is not None

    def mirror_create(self, block: StudyBlock) -> MirrorResult:
        return self._mirror(MirrorOperation.CREATE, block)

    def mirror_update(self, block: StudyBlock) -> MirrorResult:
        return self._mirror(MirrorOperation.UPDATE, block)

    def mirror_delete(self, block: StudyBlock) -> MirrorResult:
        return self._mirror(MirrorOperation.DELETE, block)

    def mirror_reminder_sent(self, block: StudyBlock) -> MirrorResult:
        return self._mirror(MirrorOperation.REMINDER_SENT, block)

    def _mirror(self, operation: MirrorOperation, block: StudyBlock) -> MirrorResult:
        link_id = block.id
        if not self.enabled:
            return MirrorResult(MirrorStatus.DISABLED, operation, link_id)

        version = block.updated_at
        with self._lock:
            last = self._last_versions.get(link_id)
            if last is not None and version is not None and version < last:
                logger.info(
                    f"Dropping stale {operation.value} mirror for block {link_id} "
                    f"(version {version.isoformat()} < {last.isoformat()})"
                )
                return MirrorResult(MirrorStatus.STALE, operation, link_id)
            if version is not None:
                self._remember(link_id, version)

            try:
                if operation is MirrorOperation.DELETE:
                    self.store.delete(link_id)
                else:
                    self.store.upsert(link_id, mirror_fields(block))
            except MirrorError as e:
                logger.warning(
                    f"Mirror {operation.value} failed for block {link_id}; "
                    f"secondary store left stale: {e}"
                )
                return MirrorResult(MirrorStatus.FAILED, operation, link_id, str(e))
            except Exception as e:
                logger.error(
                    f"Unexpected error mirroring {operation.value} for block {link_id}: {e}",
                    exc_info=True,
                )
                return MirrorResult(MirrorStatus.FAILED, operation, link_id, str(e))

            if operation is MirrorOperation.DELETE:
                # Deleted rows take no further writes
                self._last_versions.pop(link_id, None)

        logger.debug(f"Mirrored {operation.value} for block {link_id}")
        return MirrorResult(MirrorStatus.SUCCESS, operation, link_id)

    def _remember(self, link_id: str, version: datetime) -> None:
        self._last_versions[link_id] = version
        self._last_versions.move_to_end(link_id)
        while len(self._last_versions) > self.max_tracked:
            self._last_versions.popitem(last=False)
