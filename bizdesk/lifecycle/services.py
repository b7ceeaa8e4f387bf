"""
Service layer for record lifecycle operations.

``LifecycleService`` moves soft-deletable records between the active state,
the trash and permanent removal. ``HardDeleteService`` removes records that
have no trash. Every operation runs in one store transaction: guard checks,
the state change, cascades and the activity entry commit or roll back
together.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import asc, desc

from ..activity import ActivityAction, ActivityLogger
from ..config import BizdeskConfig, TrashOrdering, get_config
from ..db.base import DeletionState, SoftDeleteMixin, utcnow
from ..db.models import QuotationItem
from ..db.store import EntityStore, StoreTransaction
from ..exceptions import (
    DependentCleanupFailed,
    HasActiveDependents,
    HasDependents,
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
from .policies import (
    HARD_DELETE_MODELS,
    POLICIES,
    TRASH_GROUPS,
    ClearAssociation,
    DeleteChildren,
    DetachChildren,
    KindPolicy,
    PurgeStep,
    get_policy,
)


class LifecycleService:
    """
    Soft delete, restore, purge and trash listing for business records.

    Example:
        >>> store = EntityStore.from_url("sqlite:///bizdesk.db")
        >>> service = LifecycleService(store)
        >>> service.soft_delete(EntityKind.PROJECT, 42).changed
        True
        >>> [e.id for e in service.list_deleted().projects]
        [42]
        >>> service.restore("project", 42).is_deleted
        <DeletionState.ACTIVE: 0>
    """

    def __init__(
        self,
        store: EntityStore,
        activity_logger: Optional[ActivityLogger] = None,
        config: Optional[BizdeskConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the lifecycle service.

        Args:
            store: Entity store the service operates on
            activity_logger: Optional activity log collaborator
            config: Configuration; the global configuration when omitted
            clock: Source of deletion timestamps (naive UTC)
        """
        self.store = store
        self.config = config or get_config()
        self.activity_logger = (
            activity_logger if self.config.activity_log_enabled else None
        )
        self.clock = clock or utcnow

    def soft_delete(
        self, kind: Union[EntityKind, str], entity_id: int
    ) -> LifecycleResult:
        """
        Move a record to the trash.

        A record that is already deleted is left untouched and reported with
        ``changed=False``.

        Args:
            kind: Kind of the record
            entity_id: Id of the record

        Returns:
            Outcome including the deletion timestamp and cascaded children

        Raises:
            NotFound: The record does not exist
            HasActiveDependents: Active dependents block the delete
            StoreUnavailable: The store failed
        """
        policy = get_policy(kind)

        with self.store.transaction() as tx:
            # Guarded kinds lock the owner row so no dependent is attached
            # between the count and the update
            record = self._load(
                tx, policy, entity_id, lock=policy.delete_guard is not None
            )

            if not record.is_active:
                return LifecycleResult(
                    kind=policy.kind,
                    id=entity_id,
                    changed=False,
                    deleted_at=record.deleted_at,
                )

            count = ReferentialGuard(tx).count(policy.delete_guard, entity_id)
            if count > 0:
                raise HasActiveDependents(policy.kind.value, entity_id, count)

            deleted_at = self.clock()
            record.mark_deleted(deleted_at)

            cascaded: List[RecordRef] = []
            for rule in policy.cascade:
                children = tx.find_many(
                    rule.model,
                    **{rule.column: entity_id, "is_deleted": DeletionState.ACTIVE},
                )
                for child in children:
                    child.mark_deleted(
                        deleted_at, cascade_from=(policy.kind.value, entity_id)
                    )
                    cascaded.append(RecordRef(kind=child.kind_name, id=child.id))

            tx.flush()
            self._record_activity(
                tx,
                ActivityAction.SOFT_DELETE,
                policy,
                entity_id,
                {
                    "label": policy.label_of(record),
                    "cascaded": [ref.model_dump() for ref in cascaded],
                },
            )

            return LifecycleResult(
                kind=policy.kind,
                id=entity_id,
                changed=True,
                deleted_at=deleted_at,
                cascaded=cascaded,
            )

    def restore(self, kind: Union[EntityKind, str], entity_id: int) -> Any:
        """
        Bring a record back from the trash.

        Children that were soft-deleted together with the record come back
        with it; children deleted on their own stay in the trash.

        Args:
            kind: Kind of the record
            entity_id: Id of the record

        Returns:
            The restored record

        Raises:
            NotFound: The record does not exist
            NotDeleted: The record is active
            RestoreNotAllowed: The record was deleted with a parent that is
                still deleted or gone
            StoreUnavailable: The store failed
        """
        policy = get_policy(kind)

        with self.store.transaction() as tx:
            record = self._load(tx, policy, entity_id)

            if record.is_active:
                raise NotDeleted(policy.kind.value, entity_id)

            self._check_cascade_origin(tx, policy, record)

            restored: List[RecordRef] = []
            for rule in policy.cascade:
                children = tx.find_many(
                    rule.model,
                    **{
                        rule.column: entity_id,
                        "is_deleted": DeletionState.DELETED,
                        "cascade_deleted_from_type": policy.kind.value,
                        "cascade_deleted_from_id": entity_id,
                    },
                )
                for child in children:
                    child.mark_restored()
                    restored.append(RecordRef(kind=child.kind_name, id=child.id))

            record.mark_restored()
            tx.flush()

            self._record_activity(
                tx,
                ActivityAction.RESTORE,
                policy,
                entity_id,
                {
                    "label": policy.label_of(record),
                    "cascaded": [ref.model_dump() for ref in restored],
                },
            )
            return record

    def purge(self, kind: Union[EntityKind, str], entity_id: int) -> PurgeResult:
        """
        Permanently remove a record.

        Owned children are deleted and loose references are detached in the
        same transaction. Purge does not require the record to be in the
        trash.

        Args:
            kind: Kind of the record
            entity_id: Id of the record

        Returns:
            Counts of removed children and detached references

        Raises:
            NotFound: The record does not exist
            HasDependents: Dependents that cannot be removed block the purge
            DependentCleanupFailed: A cleanup step failed; nothing was removed
            StoreUnavailable: The store failed
        """
        policy = get_policy(kind)

        with self.store.transaction() as tx:
            record = self._load(tx, policy, entity_id, lock=True)
            label = policy.label_of(record)

            count = ReferentialGuard(tx).count(policy.purge_guard, entity_id)
            if count > 0:
                raise HasDependents(policy.kind.value, entity_id, count)

            result = PurgeResult(kind=policy.kind, id=entity_id)
            for step in policy.purge_steps:
                try:
                    affected = self._run_purge_step(tx, step, entity_id)
                except StoreUnavailable as e:
                    raise DependentCleanupFailed(
                        policy.kind.value, entity_id, step.label
                    ) from e

                if isinstance(step, DeleteChildren):
                    result.removed[step.label] = affected
                else:
                    result.detached[step.label] = affected

            tx.delete(policy.model, entity_id)

            self._record_activity(
                tx,
                ActivityAction.PURGE,
                policy,
                entity_id,
                {
                    "label": label,
                    "removed": result.removed,
                    "detached": result.detached,
                },
            )
            return result

    def list_deleted(self) -> TrashSnapshot:
        """
        Soft-deleted projects, clients, suppliers and orders.

        Returns:
            Trash entries per group, ordered per ``trash_ordering``
        """
        groups: Dict[str, List[TrashEntry]] = {}

        with self.store.transaction() as tx:
            for group, kind in TRASH_GROUPS:
                policy = POLICIES[kind]
                model = policy.model
                stmt = model.select_deleted().order_by(*self._trash_order(model))
                groups[group] = [
                    TrashEntry(
                        kind=kind,
                        id=row.id,
                        label=policy.label_of(row),
                        deleted_at=row.deleted_at,
                    )
                    for row in tx.scalars(stmt)
                ]

        return TrashSnapshot(**groups)

    def has_active_dependents(
        self, kind: Union[EntityKind, str], entity_id: int
    ) -> int:
        """
        Count active records that block soft-deleting this one.

        Only clients are guarded (by their active projects). Suppliers are
        not guarded against their orders, so the count is 0 for every other
        kind.

        Raises:
            NotFound: The record does not exist
        """
        policy = get_policy(kind)
        with self.store.transaction() as tx:
            self._load(tx, policy, entity_id)
            return ReferentialGuard(tx).count(policy.delete_guard, entity_id)

    def _load(
        self,
        tx: StoreTransaction,
        policy: KindPolicy,
        entity_id: int,
        lock: bool = False,
    ) -> SoftDeleteMixin:
        record = tx.find(policy.model, entity_id, lock=lock)
        if record is None:
            raise NotFound(policy.kind.value, entity_id)
        return record

    def _check_cascade_origin(
        self, tx: StoreTransaction, policy: KindPolicy, record: SoftDeleteMixin
    ) -> None:
        """Refuse to restore a child whose cascading parent is still deleted."""
        parent_type = record.cascade_deleted_from_type
        parent_id = record.cascade_deleted_from_id
        if not parent_type or parent_id is None:
            return

        entity_id = getattr(record, "id")
        try:
            parent_policy = get_policy(parent_type)
        except ValueError as e:
            raise RestoreNotAllowed(
                policy.kind.value, entity_id, f"unknown parent kind {parent_type}"
            ) from e

        parent = tx.find(parent_policy.model, parent_id)
        if parent is None:
            raise RestoreNotAllowed(
                policy.kind.value,
                entity_id,
                f"parent {parent_type} {parent_id} no longer exists",
            )
        if not parent.is_active:
            raise RestoreNotAllowed(
                policy.kind.value,
                entity_id,
                f"parent {parent_type} {parent_id} must be restored first",
            )

    def _run_purge_step(
        self, tx: StoreTransaction, step: PurgeStep, entity_id: int
    ) -> int:
        if isinstance(step, DeleteChildren):
            return tx.delete_many(step.model, **{step.column: entity_id})
        if isinstance(step, DetachChildren):
            return tx.update_many(
                step.model, {step.column: None}, **{step.column: entity_id}
            )
        if isinstance(step, ClearAssociation):
            return tx.clear_association(step.table, **{step.column: entity_id})
        raise TypeError(f"Unsupported purge step: {step!r}")

    def _trash_order(self, model: Any) -> List[Any]:
        if self.config.trash_ordering == TrashOrdering.INSERTION:
            return [asc(model.id)]
        return [desc(model.deleted_at), desc(model.id)]

    def _record_activity(
        self,
        tx: StoreTransaction,
        action: ActivityAction,
        policy: KindPolicy,
        entity_id: int,
        details: Dict[str, Any],
    ) -> None:
        if self.activity_logger:
            self.activity_logger.record(
                tx, action, policy.kind.value, entity_id, details
            )


class HardDeleteService:
    """
    Immediate, final delete of records that have no trash.

    Cost estimate lines, quotation lines and employee permissions are removed
    at once and never appear in the trash.
    """

    def __init__(
        self,
        store: EntityStore,
        activity_logger: Optional[ActivityLogger] = None,
    ):
        self.store = store
        self.activity_logger = activity_logger

    def delete(self, kind: Union[HardDeleteKind, str], entity_id: int) -> None:
        """
        Delete one record permanently.

        Raises:
            NotFound: The record does not exist
            ValueError: The kind is not hard-delete-only
        """
        hard_kind = HardDeleteKind.parse(kind)
        model = HARD_DELETE_MODELS[hard_kind]

        with self.store.transaction() as tx:
            tx.delete(model, entity_id)
            if self.activity_logger:
                self.activity_logger.record(
                    tx, ActivityAction.HARD_DELETE, hard_kind.value, entity_id
                )

    def delete_quotation_section(self, project_id: int, section: str) -> int:
        """
        Delete every quotation line of one section of a project's quotation.

        Returns:
            Number of lines removed
        """
        with self.store.transaction() as tx:
            removed = tx.delete_many(
                QuotationItem, project_id=project_id, section=section
            )
            if removed and self.activity_logger:
                self.activity_logger.record(
                    tx,
                    ActivityAction.HARD_DELETE,
                    HardDeleteKind.QUOTATION_ITEM.value,
                    project_id,
                    {"section": section, "removed": removed},
                )
            return removed
