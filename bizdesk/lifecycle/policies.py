"""
Per-kind lifecycle rules.

Each soft-deletable kind has one ``KindPolicy`` entry describing its mapped
class, the dependents that block its delete or purge, the children that follow
its soft delete, and the cleanup steps its purge performs before the row itself
is removed. The services read this table; they contain no per-kind branches.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Type, Union

from sqlalchemy import Table

from ..db.base import SoftDeleteMixin
from ..db.models import (
    Client,
    CostEstimateItem,
    Employee,
    EmployeePermission,
    Expense,
    Order,
    Project,
    Protocol,
    QuotationItem,
    Resource,
    Supplier,
    Task,
    Tool,
    WarehouseHistoryItem,
    WarehouseItem,
    project_employees,
    project_suppliers,
    tool_employees,
)
from .models import EntityKind, HardDeleteKind


@dataclass(frozen=True)
class DependentRule:
    """Records of ``model`` whose ``column`` points at the owner."""

    model: Type[Any]
    column: str
    active_only: bool = True


@dataclass(frozen=True)
class SoftDeleteCascade:
    """Active children soft-deleted (and restored) together with the owner."""

    model: Type[SoftDeleteMixin]
    column: str


@dataclass(frozen=True)
class DeleteChildren:
    """Purge step: permanently delete rows of ``model`` owned through ``column``."""

    model: Type[Any]
    column: str
    label: str


@dataclass(frozen=True)
class DetachChildren:
    """Purge step: null ``column`` on rows of ``model`` pointing at the owner."""

    model: Type[Any]
    column: str
    label: str


@dataclass(frozen=True)
class ClearAssociation:
    """Purge step: remove association rows linking the owner."""

    table: Table
    column: str
    label: str


PurgeStep = Union[DeleteChildren, DetachChildren, ClearAssociation]


@dataclass(frozen=True)
class KindPolicy:
    kind: EntityKind
    model: Type[SoftDeleteMixin]
    label_field: str = "name"
    delete_guard: Optional[DependentRule] = None
    purge_guard: Optional[DependentRule] = None
    cascade: Tuple[SoftDeleteCascade, ...] = ()
    purge_steps: Tuple[PurgeStep, ...] = ()

    def label_of(self, record: Any) -> str:
        value = getattr(record, self.label_field, None)
        return str(value) if value else f"{self.kind.value} {record.id}"


POLICIES: Dict[EntityKind, KindPolicy] = {
    EntityKind.CLIENT: KindPolicy(
        kind=EntityKind.CLIENT,
        model=Client,
        delete_guard=DependentRule(Project, "client_id", active_only=True),
        # A purged client cannot leave projects pointing at it, deleted or not
        purge_guard=DependentRule(Project, "client_id", active_only=False),
    ),
    # Supplier deletion does not check active orders; purge detaches them.
    EntityKind.SUPPLIER: KindPolicy(
        kind=EntityKind.SUPPLIER,
        model=Supplier,
        purge_steps=(
            DetachChildren(Order, "supplier_id", "orders"),
            ClearAssociation(project_suppliers, "supplier_id", "project_suppliers"),
        ),
    ),
    EntityKind.PROJECT: KindPolicy(
        kind=EntityKind.PROJECT,
        model=Project,
        purge_steps=(
            DeleteChildren(Expense, "project_id", "expenses"),
            DeleteChildren(Task, "project_id", "tasks"),
            DeleteChildren(Order, "project_id", "orders"),
            DeleteChildren(Resource, "project_id", "resources"),
            DeleteChildren(QuotationItem, "project_id", "quotation_items"),
            DeleteChildren(CostEstimateItem, "project_id", "cost_estimate_items"),
            DetachChildren(Project, "parent_project_id", "subprojects"),
            ClearAssociation(project_suppliers, "project_id", "project_suppliers"),
            ClearAssociation(project_employees, "project_id", "project_employees"),
        ),
    ),
    EntityKind.ORDER: KindPolicy(
        kind=EntityKind.ORDER,
        model=Order,
        label_field="title",
        cascade=(SoftDeleteCascade(Expense, "order_id"),),
        purge_steps=(DeleteChildren(Expense, "order_id", "expenses"),),
    ),
    EntityKind.TASK: KindPolicy(
        kind=EntityKind.TASK,
        model=Task,
        label_field="title",
        purge_steps=(DetachChildren(Order, "task_id", "orders"),),
    ),
    EntityKind.EXPENSE: KindPolicy(
        kind=EntityKind.EXPENSE, model=Expense, label_field="title"
    ),
    EntityKind.RESOURCE: KindPolicy(kind=EntityKind.RESOURCE, model=Resource),
    EntityKind.WAREHOUSE_ITEM: KindPolicy(
        kind=EntityKind.WAREHOUSE_ITEM,
        model=WarehouseItem,
        purge_steps=(DeleteChildren(WarehouseHistoryItem, "item_id", "history"),),
    ),
    EntityKind.TOOL: KindPolicy(
        kind=EntityKind.TOOL,
        model=Tool,
        purge_steps=(
            ClearAssociation(tool_employees, "tool_id", "tool_employees"),
            DeleteChildren(Protocol, "tool_id", "protocols"),
        ),
    ),
    EntityKind.EMPLOYEE: KindPolicy(
        kind=EntityKind.EMPLOYEE,
        model=Employee,
        purge_steps=(
            ClearAssociation(tool_employees, "employee_id", "tool_employees"),
            ClearAssociation(project_employees, "employee_id", "project_employees"),
            DeleteChildren(EmployeePermission, "employee_id", "permissions"),
        ),
    ),
}

HARD_DELETE_MODELS: Dict[HardDeleteKind, Type[Any]] = {
    HardDeleteKind.COST_ESTIMATE_ITEM: CostEstimateItem,
    HardDeleteKind.QUOTATION_ITEM: QuotationItem,
    HardDeleteKind.EMPLOYEE_PERMISSION: EmployeePermission,
}

# Trash groups in display order
TRASH_GROUPS: Tuple[Tuple[str, EntityKind], ...] = (
    ("projects", EntityKind.PROJECT),
    ("clients", EntityKind.CLIENT),
    ("suppliers", EntityKind.SUPPLIER),
    ("orders", EntityKind.ORDER),
)


def get_policy(kind: Union[EntityKind, str]) -> KindPolicy:
    """
    Look up the rules for a kind.

    Raises:
        ValueError: If the kind is unknown
    """
    return POLICIES[EntityKind.parse(kind)]
