"""
Service layer for creating and updating business records.

Records are always created ACTIVE and updates never touch deletion state, so
the only way in or out of the trash is through ``LifecycleService``.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type, Union

from sqlalchemy import func, select

from ..db.base import DeletionState, SoftDeleteMixin, utcnow
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
)
from ..db.store import EntityStore, StoreTransaction
from ..exceptions import AlreadyReceived, InactiveReference, NotFound
from ..lifecycle.models import EntityKind, HardDeleteKind
from ..lifecycle.policies import HARD_DELETE_MODELS, POLICIES

# Managed by the lifecycle engine only
LIFECYCLE_FIELDS = frozenset(
    {
        "id",
        "is_deleted",
        "deleted_at",
        "cascade_deleted_from_type",
        "cascade_deleted_from_id",
    }
)

# Foreign keys that must point at an existing, active record
REFERENCES: Dict[Type[Any], Tuple[Tuple[str, Type[Any]], ...]] = {
    Project: (("client_id", Client), ("parent_project_id", Project)),
    Task: (("project_id", Project),),
    Order: (("project_id", Project), ("supplier_id", Supplier)),
    Expense: (("project_id", Project), ("order_id", Order)),
    Resource: (("project_id", Project),),
    QuotationItem: (("project_id", Project),),
    CostEstimateItem: (("project_id", Project),),
    EmployeePermission: (("employee_id", Employee),),
}

# Association keyword -> (owning model, relationship attribute, target model)
ASSOCIATIONS: Dict[Tuple[Type[Any], str], Tuple[str, Type[Any]]] = {
    (Project, "supplier_ids"): ("suppliers", Supplier),
    (Project, "employee_ids"): ("employees", Employee),
    (Tool, "employee_ids"): ("assigned_employees", Employee),
}

# Order fields mirrored onto the expenses booked for the order
ORDER_EXPENSE_FIELDS = ("title", "amount", "net_amount", "tax_rate")
ORDER_EXPENSE_TITLE = "Order: {title}"

WAREHOUSE_CATEGORY = "Orders"
WAREHOUSE_LOCATION = "Warehouse"
DEFAULT_UNIT = "pcs"


def resolve_model(kind: Union[EntityKind, HardDeleteKind, str]) -> Type[Any]:
    """
    Mapped class for a soft-deletable or hard-delete-only kind.

    Raises:
        ValueError: If the kind is unknown
    """
    if isinstance(kind, HardDeleteKind):
        return HARD_DELETE_MODELS[kind]
    try:
        return POLICIES[EntityKind.parse(kind)].model
    except ValueError:
        return HARD_DELETE_MODELS[HardDeleteKind.parse(kind)]


def _kind_of(model: Type[Any]) -> str:
    return getattr(model, "kind_name", model.__name__)


class RecordService:
    """
    Create, update and list business records.

    Example:
        >>> records = RecordService(store)
        >>> client = records.create("client", name="ACME")
        >>> project = records.create("project", client_id=client.id, name="Roof")
        >>> records.update("project", project.id, status="Active")
    """

    def __init__(
        self,
        store: EntityStore,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.clock = clock or utcnow

    def create(
        self, kind: Union[EntityKind, HardDeleteKind, str], **fields: Any
    ) -> Any:
        """
        Create a record in the active state.

        Args:
            kind: Kind of the record
            **fields: Column values; ``supplier_ids`` / ``employee_ids`` set
                the association sets of projects and tools

        Returns:
            The new record with its id assigned

        Raises:
            ValueError: Lifecycle fields were passed
            InactiveReference: A referenced parent is missing or deleted
            NotFound: An associated supplier or employee does not exist
            InactiveReference: An associated supplier or employee is deleted
        """
        model = resolve_model(kind)
        self._reject_lifecycle_fields(fields)
        associations = self._pop_associations(model, fields)

        for column, _ in REFERENCES.get(model, ()):
            if fields.get(column) is None and not model.__table__.c[column].nullable:
                raise ValueError(f"{column} is required")

        with self.store.transaction() as tx:
            self._check_references(tx, model, fields)

            record = model(**fields)
            if isinstance(record, SoftDeleteMixin):
                record.is_deleted = DeletionState.ACTIVE
                record.deleted_at = None

            for attribute, target, ids in associations:
                setattr(record, attribute, self._load_all(tx, target, ids))

            return tx.add(record)

    def update(
        self,
        kind: Union[EntityKind, HardDeleteKind, str],
        entity_id: int,
        **changes: Any,
    ) -> Any:
        """
        Update a record's business fields.

        Association keywords replace the whole set. Changing an order's
        title, amount, net amount or tax rate is mirrored onto the expenses
        booked for that order.

        Raises:
            ValueError: Lifecycle fields were passed
            NotFound: The record does not exist
            InactiveReference: A changed reference points at a missing or
                deleted parent
        """
        model = resolve_model(kind)
        self._reject_lifecycle_fields(changes)
        associations = self._pop_associations(model, changes)

        with self.store.transaction() as tx:
            record = tx.find(model, entity_id)
            if record is None:
                raise NotFound(_kind_of(model), entity_id)

            self._check_references(tx, model, changes)

            for attribute, target, ids in associations:
                setattr(record, attribute, self._load_all(tx, target, ids))

            record = tx.update(model, entity_id, changes)

            if model is Order:
                self._mirror_order_to_expenses(tx, entity_id, changes)

            return record

    def list_active(self, kind: Union[EntityKind, str]) -> List[Any]:
        """Active records of a soft-deletable kind, by id."""
        model = POLICIES[EntityKind.parse(kind)].model
        with self.store.transaction() as tx:
            return tx.scalars(model.select_active().order_by(model.id))

    def save_protocol(
        self,
        tool_id: int,
        date: datetime,
        inspector_name: str,
        result: str,
        content: Optional[Dict[str, Any]] = None,
        next_inspection_date: Optional[datetime] = None,
    ) -> Protocol:
        """
        Record an inspection protocol for a tool.

        The protocol is numbered ``YYYY-MM-DD/N`` where N counts the tool's
        protocols on that day, and the tool's inspection dates and protocol
        number are updated.

        Raises:
            NotFound: The tool does not exist
            InactiveReference: The tool is deleted
        """
        with self.store.transaction() as tx:
            tool = tx.find(Tool, tool_id, lock=True)
            if tool is None:
                raise NotFound(Tool.kind_name, tool_id)
            if not tool.is_active:
                raise InactiveReference(
                    Tool.kind_name, tool_id, f"tool {tool_id} is deleted"
                )

            day_start = datetime(date.year, date.month, date.day)
            day_end = day_start + timedelta(days=1)
            same_day = tx.scalars(
                select(func.count())
                .select_from(Protocol)
                .where(
                    Protocol.tool_id == tool_id,
                    Protocol.date >= day_start,
                    Protocol.date < day_end,
                )
            )[0]
            number = f"{day_start:%Y-%m-%d}/{same_day + 1}"

            protocol = tx.add(
                Protocol(
                    tool_id=tool_id,
                    date=date,
                    inspector_name=inspector_name,
                    result=result,
                    number=number,
                    content=content,
                )
            )

            tool.last_inspection_date = date
            tool.inspection_expiry_date = next_inspection_date
            tool.protocol_number = number
            tx.flush()
            return protocol

    def update_protocol(
        self,
        protocol_id: int,
        date: datetime,
        inspector_name: str,
        result: str,
        content: Optional[Dict[str, Any]] = None,
        next_inspection_date: Optional[datetime] = None,
    ) -> Protocol:
        """
        Correct an inspection protocol.

        The protocol keeps its number; the tool's inspection dates follow the
        corrected protocol.

        Raises:
            NotFound: The protocol does not exist
        """
        with self.store.transaction() as tx:
            protocol = tx.update(
                Protocol,
                protocol_id,
                {
                    "date": date,
                    "inspector_name": inspector_name,
                    "result": result,
                    "content": content,
                },
            )
            tx.update(
                Tool,
                protocol.tool_id,
                {
                    "last_inspection_date": date,
                    "inspection_expiry_date": next_inspection_date,
                },
            )
            return protocol

    def receive_order(
        self, order_id: int, user_id: Optional[int] = None
    ) -> WarehouseItem:
        """
        Add a delivered order to the warehouse.

        An active warehouse item named like the order gets its quantity
        raised; otherwise a new item is created. Either way an ``IN`` history
        row is written and the order is flagged as received.

        Raises:
            NotFound: The order does not exist
            InactiveReference: The order is deleted
            AlreadyReceived: The order was added before
        """
        with self.store.transaction() as tx:
            order = tx.find(Order, order_id, lock=True)
            if order is None:
                raise NotFound(Order.kind_name, order_id)
            if not order.is_active:
                raise InactiveReference(
                    Order.kind_name, order_id, f"order {order_id} is deleted"
                )
            if order.added_to_warehouse:
                raise AlreadyReceived(order_id)

            quantity = order.quantity or 1
            now = self.clock()

            existing = tx.scalars(
                WarehouseItem.select_active()
                .where(WarehouseItem.name == order.title)
                .order_by(WarehouseItem.id)
                .limit(1)
            )
            if existing:
                item = existing[0]
                item.quantity = (item.quantity or 0) + quantity
                item.last_updated = now
            else:
                item = tx.add(
                    WarehouseItem(
                        name=order.title,
                        quantity=quantity,
                        unit=order.unit or DEFAULT_UNIT,
                        category=WAREHOUSE_CATEGORY,
                        location=WAREHOUSE_LOCATION,
                        last_updated=now,
                        is_deleted=DeletionState.ACTIVE,
                    )
                )

            tx.add(
                WarehouseHistoryItem(
                    item_id=item.id,
                    type="IN",
                    quantity=quantity,
                    date=now,
                    reason=f"Order: {order.title} (project #{order.project_id})",
                    user_id=user_id,
                )
            )
            order.added_to_warehouse = True
            tx.flush()
            return item

    @staticmethod
    def _reject_lifecycle_fields(fields: Dict[str, Any]) -> None:
        forbidden = sorted(LIFECYCLE_FIELDS.intersection(fields))
        if forbidden:
            raise ValueError(
                f"Lifecycle fields cannot be set directly: {', '.join(forbidden)}"
            )

    @staticmethod
    def _pop_associations(
        model: Type[Any], fields: Dict[str, Any]
    ) -> List[Tuple[str, Type[Any], List[int]]]:
        associations = []
        for (owner, keyword), (attribute, target) in ASSOCIATIONS.items():
            if owner is model and keyword in fields:
                ids = list(fields.pop(keyword) or [])
                associations.append((attribute, target, ids))
        return associations

    @staticmethod
    def _load_all(
        tx: StoreTransaction, model: Type[Any], ids: Iterable[int]
    ) -> List[Any]:
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []
        found = {record.id: record for record in tx.find_many(model, id=wanted)}
        for entity_id in wanted:
            if entity_id not in found:
                raise NotFound(_kind_of(model), entity_id)
            record = found[entity_id]
            if isinstance(record, SoftDeleteMixin) and not record.is_active:
                kind = _kind_of(model)
                raise InactiveReference(
                    kind, entity_id, f"{kind} {entity_id} is deleted"
                )
        return [found[entity_id] for entity_id in wanted]

    @staticmethod
    def _check_references(
        tx: StoreTransaction, model: Type[Any], fields: Dict[str, Any]
    ) -> None:
        for column, target in REFERENCES.get(model, ()):
            target_id = fields.get(column)
            if target_id is None:
                if column in fields and not model.__table__.c[column].nullable:
                    raise ValueError(f"{column} cannot be empty")
                continue
            # Shared lock keeps a concurrent soft delete of the parent out
            parent = tx.find(target, target_id, lock=True, shared=True)
            kind = target.kind_name
            if parent is None:
                raise InactiveReference(
                    kind, target_id, f"{kind} {target_id} does not exist"
                )
            if not parent.is_active:
                raise InactiveReference(
                    kind, target_id, f"{kind} {target_id} is deleted"
                )

    @staticmethod
    def _mirror_order_to_expenses(
        tx: StoreTransaction, order_id: int, changes: Dict[str, Any]
    ) -> None:
        patch = {
            name: changes[name] for name in ORDER_EXPENSE_FIELDS if name in changes
        }
        if not patch:
            return
        if "title" in patch:
            patch["title"] = ORDER_EXPENSE_TITLE.format(title=patch["title"])
        tx.update_many(Expense, patch, order_id=order_id)
