"""
Lifecycle Module - soft delete, restore, purge and trash.

Provides the per-kind rule table, the referential guard and the services that
move business records between the active state, the trash and permanent
removal.
"""

from ..exceptions import (
    AlreadyActive,
    AlreadyDeleted,
    DependentCleanupFailed,
    HasActiveDependents,
    HasDependents,
    InactiveReference,
    LifecycleError,
    NotDeleted,
    NotFound,
    RestoreNotAllowed,
    StoreUnavailable,
)
from .guards import ReferentialGuard
from .models import (
    EntityKind,
    HardDeleteKind,
    LifecycleResult,
    PurgeResult,
    RecordRef,
    TrashEntry,
    TrashSnapshot,
)
from .policies import KindPolicy, get_policy
from .services import HardDeleteService, LifecycleService

__all__ = [
    # Services
    "LifecycleService",
    "HardDeleteService",
    "ReferentialGuard",
    # Rules
    "KindPolicy",
    "get_policy",
    # Models
    "EntityKind",
    "HardDeleteKind",
    "LifecycleResult",
    "PurgeResult",
    "RecordRef",
    "TrashEntry",
    "TrashSnapshot",
    # Exceptions
    "LifecycleError",
    "NotFound",
    "HasDependents",
    "HasActiveDependents",
    "AlreadyDeleted",
    "NotDeleted",
    "AlreadyActive",
    "RestoreNotAllowed",
    "DependentCleanupFailed",
    "InactiveReference",
    "StoreUnavailable",
]
