"""
SQLAlchemy models for Bizdesk business records.

Soft-deletable records (clients, suppliers, projects and their work items,
warehouse stock, tools, employees) use ``SoftDeleteMixin``. Quotation and cost
estimate lines and employee permissions are hard-delete-only.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import (
    Base,
    HardDeleteOnlyMixin,
    SoftDeleteMixin,
    register_lifecycle_listeners,
    utcnow,
)

# Association tables
project_suppliers = Table(
    "project_suppliers",
    Base.metadata,
    Column("project_id", Integer, ForeignKey("projects.id"), primary_key=True),
    Column("supplier_id", Integer, ForeignKey("suppliers.id"), primary_key=True),
)

project_employees = Table(
    "project_employees",
    Base.metadata,
    Column("project_id", Integer, ForeignKey("projects.id"), primary_key=True),
    Column("employee_id", Integer, ForeignKey("employees.id"), primary_key=True),
)

tool_employees = Table(
    "tool_employees",
    Base.metadata,
    Column("tool_id", Integer, ForeignKey("tools.id"), primary_key=True),
    Column("employee_id", Integer, ForeignKey("employees.id"), primary_key=True),
)


class Client(Base, SoftDeleteMixin):
    """Client (company or private person) that owns projects."""

    __tablename__ = "clients"
    kind_name = "client"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    color: Mapped[Optional[str]] = mapped_column(String(20))


class Supplier(Base, SoftDeleteMixin):
    """Supplier of materials or services."""

    __tablename__ = "suppliers"
    kind_name = "supplier"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_person: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[Optional[str]] = mapped_column(String(200))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    address: Mapped[Optional[str]] = mapped_column(String(300))
    website: Mapped[Optional[str]] = mapped_column(String(300))
    notes: Mapped[Optional[str]] = mapped_column(Text)


class Employee(Base, SoftDeleteMixin):
    __tablename__ = "employees"
    kind_name = "employee"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[Optional[str]] = mapped_column(String(100))
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    email: Mapped[Optional[str]] = mapped_column(String(200))
    rate: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(20), default="Active")

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class EmployeePermission(Base, HardDeleteOnlyMixin):
    """Certificate or permit held by an employee."""

    __tablename__ = "employee_permissions"
    kind_name = "employee_permission"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    issue_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    number: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Project(Base, SoftDeleteMixin):
    """Project for a client; owns tasks, expenses, orders and resources."""

    __tablename__ = "projects"
    kind_name = "project"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id"), nullable=False, index=True
    )
    parent_project_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("projects.id"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), default="Planning")
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    total_value: Mapped[float] = mapped_column(Float, default=0.0)
    quote_due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    quote_status: Mapped[Optional[str]] = mapped_column(String(50))
    quotation_title: Mapped[Optional[str]] = mapped_column(String(200))
    accepted_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    address: Mapped[Optional[str]] = mapped_column(String(300))
    lat: Mapped[Optional[float]] = mapped_column(Float)
    lng: Mapped[Optional[float]] = mapped_column(Float)
    color_marker: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    suppliers: Mapped[List[Supplier]] = relationship(secondary=project_suppliers)
    employees: Mapped[List[Employee]] = relationship(secondary=project_employees)


class Task(Base, SoftDeleteMixin):
    __tablename__ = "tasks"
    kind_name = "task"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(50), default="Todo")
    priority: Mapped[str] = mapped_column(String(20), default="Medium")
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    checklist: Mapped[Optional[Any]] = mapped_column(JSON)
    subtasks: Mapped[Optional[Any]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Order(Base, SoftDeleteMixin):
    """Material order placed for a project."""

    __tablename__ = "orders"
    kind_name = "order"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    # Loose reference, not a foreign key
    task_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    supplier_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("suppliers.id"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    net_amount: Mapped[Optional[float]] = mapped_column(Float)
    tax_rate: Mapped[Optional[float]] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(20), default="Pending")
    date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    quantity: Mapped[Optional[float]] = mapped_column(Float)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    added_to_warehouse: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    url: Mapped[Optional[str]] = mapped_column(String(500))


class Expense(Base, SoftDeleteMixin):
    """Project cost, either labour or a purchase linked to an order."""

    __tablename__ = "expenses"
    kind_name = "expense"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("orders.id"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0)
    net_amount: Mapped[Optional[float]] = mapped_column(Float)
    tax_rate: Mapped[Optional[float]] = mapped_column(Float)
    type: Mapped[str] = mapped_column(String(20), default="Purchase")
    date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Resource(Base, SoftDeleteMixin):
    """File, image or link attached to a project."""

    __tablename__ = "resources"
    kind_name = "resource"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="File")
    folder: Mapped[Optional[str]] = mapped_column(String(200))
    content_url: Mapped[Optional[str]] = mapped_column(String(500))
    content_blob: Mapped[Optional[bytes]] = mapped_column(LargeBinary)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class QuotationItem(Base, HardDeleteOnlyMixin):
    __tablename__ = "quotation_items"
    kind_name = "quotation_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, default=1.0)
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    unit_price: Mapped[float] = mapped_column(Float, default=0.0)
    margin: Mapped[Optional[float]] = mapped_column(Float)
    price_with_margin: Mapped[Optional[float]] = mapped_column(Float)
    total: Mapped[float] = mapped_column(Float, default=0.0)
    section: Mapped[Optional[str]] = mapped_column(String(200))


class CostEstimateItem(Base, HardDeleteOnlyMixin):
    __tablename__ = "cost_estimate_items"
    kind_name = "cost_estimate_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id"), nullable=False, index=True
    )
    section: Mapped[str] = mapped_column(String(200), default="")
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, default=1.0)
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    unit_net_price: Mapped[float] = mapped_column(Float, default=0.0)
    tax_rate: Mapped[float] = mapped_column(Float, default=23.0)


class Tool(Base, SoftDeleteMixin):
    """Tool or piece of equipment, assigned to employees and inspected."""

    __tablename__ = "tools"
    kind_name = "tool"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    brand: Mapped[str] = mapped_column(String(100), default="")
    model: Mapped[Optional[str]] = mapped_column(String(100))
    serial_number: Mapped[str] = mapped_column(String(100), default="")
    status: Mapped[str] = mapped_column(String(20), default="Available")
    purchase_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    price: Mapped[float] = mapped_column(Float, default=0.0)
    last_inspection_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    inspection_expiry_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    protocol_number: Mapped[Optional[str]] = mapped_column(String(50))

    assigned_employees: Mapped[List[Employee]] = relationship(
        secondary=tool_employees
    )


class Protocol(Base):
    """Inspection protocol of a tool. Created and updated, never soft-deleted."""

    __tablename__ = "protocols"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tool_id: Mapped[int] = mapped_column(
        ForeignKey("tools.id"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    inspector_name: Mapped[str] = mapped_column(String(200), nullable=False)
    result: Mapped[str] = mapped_column(String(100), nullable=False)
    number: Mapped[Optional[str]] = mapped_column(String(50))
    content: Mapped[Optional[Any]] = mapped_column(JSON)


class WarehouseItem(Base, SoftDeleteMixin):
    __tablename__ = "warehouse_items"
    kind_name = "warehouse_item"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    quantity: Mapped[float] = mapped_column(Float, default=0.0)
    unit: Mapped[str] = mapped_column(String(20), default="pcs")
    min_quantity: Mapped[Optional[float]] = mapped_column(Float)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    location: Mapped[Optional[str]] = mapped_column(String(100))
    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class WarehouseHistoryItem(Base):
    """Stock movement of a warehouse item (IN or OUT)."""

    __tablename__ = "warehouse_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("warehouse_items.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    reason: Mapped[Optional[str]] = mapped_column(String(300))
    user_id: Mapped[Optional[int]] = mapped_column(Integer)


class ActivityEntry(Base):
    """Lifecycle event recorded by the activity logger."""

    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    entity_kind: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int] = mapped_column(Integer, nullable=False)
    details: Mapped[Optional[Any]] = mapped_column(JSON)


register_lifecycle_listeners(Base)
