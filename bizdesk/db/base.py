"""
Declarative base and lifecycle mixins for Bizdesk records.

Two capability traits are provided:

- ``SoftDeleteMixin`` for records that move to the trash and can be restored
- ``HardDeleteOnlyMixin`` for records whose delete is immediate and final
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, ClassVar, Optional, Tuple, Type

from sqlalchemy import CheckConstraint, DateTime, Integer, String, event, select
from sqlalchemy.orm import Mapped, declarative_base, declared_attr, mapped_column
from sqlalchemy.sql import Select
from sqlalchemy.types import TypeDecorator

from ..exceptions import AlreadyDeleted, NotDeleted

Base = declarative_base()


def utcnow() -> datetime:
    """Current time as naive UTC, the form stored in every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DeletionState(IntEnum):
    """Deletion state of a soft-deletable record, stored as 0/1."""

    ACTIVE = 0
    DELETED = 1


class DeletionStateType(TypeDecorator):  # type: ignore[type-arg]
    """Persist ``DeletionState`` as the integer flag used by existing consumers."""

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[int]:
        if value is None:
            return None
        return int(DeletionState(value))

    def process_result_value(self, value: Any, dialect: Any) -> Optional[DeletionState]:
        if value is None:
            return None
        return DeletionState(value)


class SoftDeleteMixin:
    """
    Mixin adding soft delete state to a mapped record.

    Provides:
    - ``is_deleted`` / ``deleted_at`` with a consistency CHECK constraint
    - Cascade markers naming the parent whose soft delete took this row down
    - ``mark_deleted`` / ``mark_restored`` state transitions
    - Select builders for active and deleted rows

    Usage:
        class Client(Base, SoftDeleteMixin):
            __tablename__ = "clients"
            kind_name = "client"
            id: Mapped[int] = mapped_column(primary_key=True)
    """

    kind_name: ClassVar[str] = "record"

    is_deleted: Mapped[DeletionState] = mapped_column(
        DeletionStateType(),
        default=DeletionState.ACTIVE,
        nullable=False,
        index=True,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Deletion cascade tracking
    cascade_deleted_from_type: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )
    cascade_deleted_from_id: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )

    @declared_attr.directive
    def __table_args__(cls) -> Tuple[Any, ...]:
        table_name = getattr(cls, "__tablename__", cls.__name__.lower())
        return (
            CheckConstraint(
                "(is_deleted = 0 AND deleted_at IS NULL) OR "
                "(is_deleted = 1 AND deleted_at IS NOT NULL)",
                name=f"ck_{table_name}_deletion_consistency",
            ),
        )

    @property
    def is_active(self) -> bool:
        return self.is_deleted == DeletionState.ACTIVE

    def mark_deleted(
        self, at: datetime, cascade_from: Optional[Tuple[str, int]] = None
    ) -> None:
        """
        Move this record to the trash.

        Args:
            at: Deletion timestamp (naive UTC)
            cascade_from: Optional (parent kind, parent id) when deleted as a
                side effect of the parent's soft delete

        Raises:
            AlreadyDeleted: If the record is already deleted
        """
        if self.is_deleted == DeletionState.DELETED:
            raise AlreadyDeleted(self.kind_name, getattr(self, "id", 0))

        self.is_deleted = DeletionState.DELETED
        self.deleted_at = at

        if cascade_from:
            self.cascade_deleted_from_type = cascade_from[0]
            self.cascade_deleted_from_id = cascade_from[1]

    def mark_restored(self) -> None:
        """
        Bring this record back from the trash.

        Raises:
            NotDeleted: If the record is active
        """
        if self.is_deleted != DeletionState.DELETED:
            raise NotDeleted(self.kind_name, getattr(self, "id", 0))

        self.is_deleted = DeletionState.ACTIVE
        self.deleted_at = None
        self.cascade_deleted_from_type = None
        self.cascade_deleted_from_id = None

    @classmethod
    def select_active(cls) -> Select[Any]:
        """Select statement for active (non-deleted) rows only."""
        return select(cls).where(cls.is_deleted == DeletionState.ACTIVE)

    @classmethod
    def select_deleted(cls) -> Select[Any]:
        """Select statement for deleted rows only."""
        return select(cls).where(cls.is_deleted == DeletionState.DELETED)


class HardDeleteOnlyMixin:
    """
    Marker for records without a trash.

    Deleting such a record removes the row at once. These records never carry
    deletion state and never appear in the trash.
    """

    kind_name: ClassVar[str] = "record"


def prevent_unit_of_work_delete(mapper: Any, connection: Any, target: Any) -> None:
    """
    Refuse ``session.delete()`` on soft-deletable records.

    Connected to SQLAlchemy's ``before_delete`` event. Permanent removal goes
    through the purge path, which issues explicit DELETE statements.
    """
    if isinstance(target, SoftDeleteMixin):
        raise RuntimeError(
            f"Hard delete attempted on {target.__class__.__name__}. "
            "Use soft delete or purge instead."
        )


def register_lifecycle_listeners(base_class: Type[Any]) -> None:
    """
    Register the hard delete guard on every soft-deletable mapper.

    Args:
        base_class: The declarative base class
    """
    for mapper in base_class.registry.mappers:
        if issubclass(mapper.class_, SoftDeleteMixin) and not event.contains(
            mapper.class_, "before_delete", prevent_unit_of_work_delete
        ):
            event.listen(mapper.class_, "before_delete", prevent_unit_of_work_delete)
