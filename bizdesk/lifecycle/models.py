"""
Data models for lifecycle operations.

Entity kinds name the record types the lifecycle engine dispatches on. Result
models describe the outcome of soft delete, purge and trash listing.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EntityKind(str, Enum):
    """Soft-deletable record types."""

    CLIENT = "client"
    SUPPLIER = "supplier"
    PROJECT = "project"
    ORDER = "order"
    TASK = "task"
    EXPENSE = "expense"
    RESOURCE = "resource"
    WAREHOUSE_ITEM = "warehouse_item"
    TOOL = "tool"
    EMPLOYEE = "employee"

    @classmethod
    def parse(cls, value: Union["EntityKind", str]) -> "EntityKind":
        """
        Accept an EntityKind, its value or its name (case-insensitive).

        Raises:
            ValueError: If the value names no known kind
        """
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        for kind in cls:
            if normalized == kind.value:
                return kind
        raise ValueError(f"Unknown entity kind: {value}")


class HardDeleteKind(str, Enum):
    """Record types whose delete is immediate and final."""

    COST_ESTIMATE_ITEM = "cost_estimate_item"
    QUOTATION_ITEM = "quotation_item"
    EMPLOYEE_PERMISSION = "employee_permission"

    @classmethod
    def parse(cls, value: Union["HardDeleteKind", str]) -> "HardDeleteKind":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        for kind in cls:
            if normalized == kind.value:
                return kind
        raise ValueError(f"Unknown hard-delete kind: {value}")


class RecordRef(BaseModel):
    """Reference to one record."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., description="Record kind")
    id: int = Field(..., description="Record id")


class LifecycleResult(BaseModel):
    """Outcome of a soft delete."""

    kind: EntityKind = Field(..., description="Kind of the target record")
    id: int = Field(..., description="Id of the target record")
    changed: bool = Field(
        ..., description="False when the record was already in the requested state"
    )
    deleted_at: Optional[datetime] = Field(
        None, description="Deletion timestamp after the operation"
    )
    cascaded: List[RecordRef] = Field(
        default_factory=list,
        description="Children soft-deleted together with the target",
    )


class PurgeResult(BaseModel):
    """Outcome of a purge: the row itself plus what its cleanup touched."""

    kind: EntityKind = Field(..., description="Kind of the purged record")
    id: int = Field(..., description="Id of the purged record")
    removed: Dict[str, int] = Field(
        default_factory=dict, description="Owned children deleted, by kind"
    )
    detached: Dict[str, int] = Field(
        default_factory=dict,
        description="References nulled or association rows cleared, by target",
    )

    @property
    def total_removed(self) -> int:
        return sum(self.removed.values())


class TrashEntry(BaseModel):
    """One soft-deleted record as shown in the trash."""

    kind: EntityKind
    id: int
    label: str = Field(..., description="Human-readable name or title")
    deleted_at: datetime


class TrashSnapshot(BaseModel):
    """
    Soft-deleted records grouped by the kinds that have a trash view.

    Every list is ordered by deletion time, newest first, unless configured
    for insertion order.
    """

    projects: List[TrashEntry] = Field(default_factory=list)
    clients: List[TrashEntry] = Field(default_factory=list)
    suppliers: List[TrashEntry] = Field(default_factory=list)
    orders: List[TrashEntry] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.projects)
            + len(self.clients)
            + len(self.suppliers)
            + len(self.orders)
        )

    def entries(self) -> List[TrashEntry]:
        """All entries as one list, group by group."""
        return [*self.projects, *self.clients, *self.suppliers, *self.orders]
