"""Exceptions for record lifecycle operations."""

from typing import Optional


class LifecycleError(Exception):
    """Base exception for lifecycle operations."""

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        entity_id: Optional[int] = None,
    ):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(message)


class NotFound(LifecycleError):
    """Raised when an operation references an id absent from the store."""

    def __init__(self, kind: str, entity_id: int):
        super().__init__(f"{kind} {entity_id} not found", kind=kind, entity_id=entity_id)


class HasDependents(LifecycleError):
    """Raised when dependent records block a purge."""

    dependent_label = "dependent"

    def __init__(self, kind: str, entity_id: int, count: int):
        self.count = count
        super().__init__(
            f"{kind} {entity_id} still has {count} {self.dependent_label} record(s)",
            kind=kind,
            entity_id=entity_id,
        )


class HasActiveDependents(HasDependents):
    """Raised when active dependent records block a soft delete."""

    dependent_label = "active dependent"


class AlreadyDeleted(LifecycleError):
    """Raised when marking an already deleted record as deleted."""

    def __init__(self, kind: str, entity_id: int):
        super().__init__(
            f"{kind} {entity_id} is already deleted", kind=kind, entity_id=entity_id
        )


class NotDeleted(LifecycleError):
    """Raised when attempting to restore a record that is not deleted."""

    def __init__(self, kind: str, entity_id: int):
        super().__init__(
            f"{kind} {entity_id} is not deleted and cannot be restored",
            kind=kind,
            entity_id=entity_id,
        )


class RestoreNotAllowed(LifecycleError):
    """Raised when restoration is blocked by the record's cascade origin."""

    def __init__(self, kind: str, entity_id: int, reason: str):
        self.reason = reason
        super().__init__(
            f"{kind} {entity_id} cannot be restored: {reason}",
            kind=kind,
            entity_id=entity_id,
        )


class DependentCleanupFailed(LifecycleError):
    """Raised when a purge could not remove or detach owned children."""

    def __init__(self, kind: str, entity_id: int, step: str):
        self.step = step
        super().__init__(
            f"Purge of {kind} {entity_id} failed while cleaning up {step}",
            kind=kind,
            entity_id=entity_id,
        )


class InactiveReference(LifecycleError):
    """Raised when a new record references a missing or deleted parent."""

    def __init__(self, kind: str, entity_id: int, reason: str):
        self.reason = reason
        super().__init__(reason, kind=kind, entity_id=entity_id)


class AlreadyReceived(LifecycleError):
    """Raised when an order has already been added to the warehouse."""

    def __init__(self, entity_id: int):
        super().__init__(
            f"order {entity_id} is already in the warehouse",
            kind="order",
            entity_id=entity_id,
        )


class StoreUnavailable(LifecycleError):
    """Raised when the underlying persistence layer fails."""

    def __init__(self, message: str):
        super().__init__(message)


# Restore of an active record
AlreadyActive = NotDeleted
