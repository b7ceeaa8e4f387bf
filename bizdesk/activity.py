"""
Activity log for record lifecycle events.

Every state-changing lifecycle operation can be recorded as an
``ActivityEntry`` row written inside the operation's own transaction, so an
entry exists exactly when the change was committed.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select

from .db.base import utcnow
from .db.models import ActivityEntry
from .db.store import EntityStore, StoreTransaction

logger = logging.getLogger(__name__)


class ActivityAction(str, Enum):
    """Lifecycle actions recorded in the activity log."""

    SOFT_DELETE = "SOFT_DELETE"
    RESTORE = "RESTORE"
    PURGE = "PURGE"
    HARD_DELETE = "HARD_DELETE"


class ActivityRecord(BaseModel):
    """Read model of one activity log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: datetime
    action: str
    entity_kind: str
    entity_id: int
    details: Optional[Dict[str, Any]] = Field(default=None)


class ActivityLogger:
    """
    Records lifecycle events.

    Example:
        >>> activity = ActivityLogger(store)
        >>> service = LifecycleService(store, activity_logger=activity)
        >>> service.soft_delete("client", 7)
        >>> activity.recent(limit=1)[0].action
        'SOFT_DELETE'
    """

    def __init__(
        self,
        store: EntityStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.clock = clock or utcnow

    def record(
        self,
        tx: StoreTransaction,
        action: Union[ActivityAction, str],
        kind: str,
        entity_id: int,
        details: Optional[Dict[str, Any]] = None,
    ) -> ActivityEntry:
        """
        Write an entry in the caller's transaction.

        Args:
            tx: Open store transaction of the lifecycle operation
            action: Action performed
            kind: Kind of the affected record
            entity_id: Id of the affected record
            details: JSON-serializable extra information

        Returns:
            The pending entry; it is committed with the transaction
        """
        action_value = ActivityAction(action).value
        entry = ActivityEntry(
            timestamp=self.clock(),
            action=action_value,
            entity_kind=kind,
            entity_id=entity_id,
            details=details or None,
        )
        tx.add(entry)
        logger.info(f"{action_value} {kind} {entity_id}")
        return entry

    def recent(
        self, limit: int = 20, kind: Optional[str] = None
    ) -> List[ActivityRecord]:
        """
        Latest entries, newest first.

        Args:
            limit: Maximum number of entries
            kind: Only entries for this record kind
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")

        stmt = select(ActivityEntry)
        if kind:
            stmt = stmt.where(ActivityEntry.entity_kind == kind)
        stmt = stmt.order_by(
            ActivityEntry.timestamp.desc(), ActivityEntry.id.desc()
        ).limit(limit)

        with self.store.transaction() as tx:
            rows = tx.scalars(stmt)
            return [ActivityRecord.model_validate(row) for row in rows]

    def entity_history(self, kind: str, entity_id: int) -> List[ActivityRecord]:
        """All entries for one record, oldest first."""
        with self.store.transaction() as tx:
            rows = tx.find_many(
                ActivityEntry,
                order_by=[ActivityEntry.timestamp, ActivityEntry.id],
                entity_kind=kind,
                entity_id=entity_id,
            )
            return [ActivityRecord.model_validate(row) for row in rows]
