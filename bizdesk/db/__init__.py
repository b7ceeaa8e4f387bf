"""
Persistence layer: declarative base, record models and the entity store.
"""

from .base import (
    Base,
    DeletionState,
    HardDeleteOnlyMixin,
    SoftDeleteMixin,
    utcnow,
)
from .models import (
    ActivityEntry,
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
from .store import EntityStore, StoreTransaction

__all__ = [
    # Base and mixins
    "Base",
    "DeletionState",
    "SoftDeleteMixin",
    "HardDeleteOnlyMixin",
    "utcnow",
    # Store
    "EntityStore",
    "StoreTransaction",
    # Records
    "Client",
    "Supplier",
    "Project",
    "Task",
    "Order",
    "Expense",
    "Resource",
    "QuotationItem",
    "CostEstimateItem",
    "Employee",
    "EmployeePermission",
    "Tool",
    "Protocol",
    "WarehouseItem",
    "WarehouseHistoryItem",
    "ActivityEntry",
    # Association tables
    "project_suppliers",
    "project_employees",
    "tool_employees",
]
