"""
Tests for soft delete, restore, purge and the trash.

Covers the referential guard, cascades through cascade markers, purge cleanup
plans per kind, transactional rollback and trash ordering.
"""

from datetime import datetime

import pytest
from sqlalchemy import func, select

from bizdesk.config import BizdeskConfig, TrashOrdering
from bizdesk.db import (
    ActivityEntry,
    Client,
    CostEstimateItem,
    DeletionState,
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
from bizdesk.db.store import EntityStore, StoreTransaction
from bizdesk.lifecycle import (
    AlreadyActive,
    DependentCleanupFailed,
    EntityKind,
    HardDeleteKind,
    HasActiveDependents,
    HasDependents,
    LifecycleService,
    NotDeleted,
    NotFound,
    ReferentialGuard,
    RestoreNotAllowed,
    StoreUnavailable,
)
from bizdesk.records import RecordService

pytestmark = pytest.mark.lifecycle


def add(store, record):
    with store.transaction() as tx:
        return tx.add(record)


def fetch(store, model, entity_id):
    with store.transaction() as tx:
        return tx.find(model, entity_id)


def count_rows(store, table):
    with store.transaction() as tx:
        return tx.session.execute(select(func.count()).select_from(table)).scalar_one()


@pytest.fixture
def client(records):
    return records.create("client", name="ACME Sp. z o.o.", email="office@acme.test")


@pytest.fixture
def project(records, client):
    return records.create("project", client_id=client.id, name="Roof repair")


class TestSoftDelete:
    """Test moving records to the trash."""

    def test_project_soft_delete_scenario(self, store, lifecycle, client, clock):
        """Project #42 without dependents is deleted at call time and trashed."""
        add(store, Project(id=42, client_id=client.id, name="Warehouse hall"))

        result = lifecycle.soft_delete(EntityKind.PROJECT, 42)

        assert result.changed is True
        assert result.deleted_at == clock.now
        project = fetch(store, Project, 42)
        assert project.is_deleted == DeletionState.DELETED
        assert project.deleted_at == clock.now
        assert 42 in [entry.id for entry in lifecycle.list_deleted().projects]

    def test_soft_delete_accepts_kind_strings(self, lifecycle, project):
        """Kinds can be passed by value in any case."""
        result = lifecycle.soft_delete("PROJECT", project.id)
        assert result.kind == EntityKind.PROJECT

    def test_soft_delete_already_deleted_is_noop(self, store, lifecycle, project, clock):
        """A second soft delete succeeds without touching the timestamp."""
        first = lifecycle.soft_delete("project", project.id)
        clock.advance(hours=2)

        second = lifecycle.soft_delete("project", project.id)

        assert second.changed is False
        assert second.deleted_at == first.deleted_at
        assert fetch(store, Project, project.id).deleted_at == first.deleted_at

    def test_soft_delete_missing_record(self, lifecycle):
        """Soft deleting an absent id raises NotFound."""
        with pytest.raises(NotFound) as exc:
            lifecycle.soft_delete("client", 999)

        assert exc.value.kind == "client"
        assert exc.value.entity_id == 999

    def test_soft_delete_unknown_kind(self, lifecycle):
        """Unknown kinds are rejected."""
        with pytest.raises(ValueError):
            lifecycle.soft_delete("invoice", 1)

    def test_project_soft_delete_does_not_cascade(self, store, records, lifecycle, project):
        """Tasks and expenses stay active when their project is trashed."""
        task = records.create("task", project_id=project.id, title="Measure roof")
        expense = records.create(
            "expense", project_id=project.id, title="Fuel", amount=120.0
        )

        lifecycle.soft_delete("project", project.id)

        assert fetch(store, Task, task.id).is_active
        assert fetch(store, Expense, expense.id).is_active


class TestReferentialGuard:
    """Test the client guard and the supplier asymmetry."""

    def test_client_with_active_projects_scenario(self, store, records, lifecycle):
        """Client #7 with 2 active and 1 deleted project cannot be deleted."""
        add(store, Client(id=7, name="Client 7"))
        records.create("project", client_id=7, name="A")
        records.create("project", client_id=7, name="B")
        deleted = records.create("project", client_id=7, name="C")
        lifecycle.soft_delete("project", deleted.id)

        with pytest.raises(HasActiveDependents) as exc:
            lifecycle.soft_delete("client", 7)

        assert exc.value.count == 2
        client = fetch(store, Client, 7)
        assert client.is_deleted == DeletionState.ACTIVE
        assert client.deleted_at is None

    @pytest.mark.parametrize("active,deleted", [(0, 0), (1, 0), (2, 3), (0, 2)])
    def test_guard_counts_only_active_projects(
        self, records, lifecycle, client, active, deleted
    ):
        """has_active_dependents returns N for N active and M deleted projects."""
        for i in range(active):
            records.create("project", client_id=client.id, name=f"Active {i}")
        for i in range(deleted):
            project = records.create("project", client_id=client.id, name=f"Old {i}")
            lifecycle.soft_delete("project", project.id)

        assert lifecycle.has_active_dependents("client", client.id) == active

    def test_guard_enforcement_matches_count(self, records, lifecycle, client):
        """Client soft delete succeeds once its projects are all trashed."""
        project = records.create("project", client_id=client.id, name="Only one")
        assert lifecycle.has_active_dependents("client", client.id) == 1
        with pytest.raises(HasActiveDependents):
            lifecycle.soft_delete("client", client.id)

        lifecycle.soft_delete("project", project.id)

        assert lifecycle.has_active_dependents("client", client.id) == 0
        assert lifecycle.soft_delete("client", client.id).changed is True

    def test_supplier_with_active_orders_is_not_guarded(
        self, store, records, lifecycle, project
    ):
        """Supplier deletion does not check its orders."""
        supplier = records.create("supplier", name="Steel Ltd")
        records.create(
            "order", project_id=project.id, supplier_id=supplier.id, title="Beams"
        )

        assert lifecycle.has_active_dependents("supplier", supplier.id) == 0
        assert lifecycle.soft_delete("supplier", supplier.id).changed is True
        assert not fetch(store, Supplier, supplier.id).is_active

    def test_unguarded_kinds_report_zero(self, records, lifecycle, project):
        """Kinds without a guard always report zero dependents."""
        records.create("task", project_id=project.id, title="Inspect")
        assert lifecycle.has_active_dependents("project", project.id) == 0

    def test_has_active_dependents_missing_record(self, lifecycle):
        with pytest.raises(NotFound):
            lifecycle.has_active_dependents("client", 404)

    def test_project_committed_after_count_slips_through_on_sqlite(
        self, tmp_path, test_config, clock, monkeypatch
    ):
        """
        SQLite ignores FOR UPDATE / FOR SHARE, so a project committed by
        another connection between the guard count and the state change is
        not seen: the client ends up deleted while owning an active project.
        """
        store = EntityStore.from_url(f"sqlite:///{tmp_path / 'race.db'}")
        store.create_all()
        try:
            if store.engine.dialect.name != "sqlite":
                pytest.skip("row locks close the gap on this dialect")

            records = RecordService(store, clock=clock)
            service = LifecycleService(store, config=test_config, clock=clock)
            client = records.create("client", name="Racing client")
            real_count = ReferentialGuard.count

            def count_then_attach_project(self, rule, owner_id):
                counted = real_count(self, rule, owner_id)
                if rule is not None:
                    records.create("project", client_id=owner_id, name="Late")
                return counted

            monkeypatch.setattr(ReferentialGuard, "count", count_then_attach_project)
            result = service.soft_delete("client", client.id)
            monkeypatch.undo()

            assert result.changed is True
            assert fetch(store, Client, client.id).is_deleted == DeletionState.DELETED
            assert service.has_active_dependents("client", client.id) == 1
        finally:
            store.dispose()


class TestOrderCascade:
    """Test that orders take their expenses to the trash and back."""

    @pytest.fixture
    def order(self, records, project):
        return records.create("order", project_id=project.id, title="Cement", amount=500)

    def test_order_soft_delete_cascades_to_expenses(
        self, store, records, lifecycle, project, order, clock
    ):
        """Active expenses of an order are trashed with markers."""
        e1 = records.create("expense", project_id=project.id, order_id=order.id, title="a")
        e2 = records.create("expense", project_id=project.id, order_id=order.id, title="b")

        result = lifecycle.soft_delete("order", order.id)

        assert sorted(ref.id for ref in result.cascaded) == sorted([e1.id, e2.id])
        for expense_id in (e1.id, e2.id):
            expense = fetch(store, Expense, expense_id)
            assert expense.is_deleted == DeletionState.DELETED
            assert expense.deleted_at == clock.now
            assert expense.cascade_deleted_from_type == "order"
            assert expense.cascade_deleted_from_id == order.id

    def test_order_restore_only_restores_cascaded_expenses(
        self, store, records, lifecycle, project, order, clock
    ):
        """An expense deleted on its own stays in the trash."""
        own = records.create("expense", project_id=project.id, order_id=order.id, title="own")
        linked = records.create(
            "expense", project_id=project.id, order_id=order.id, title="linked"
        )
        lifecycle.soft_delete("expense", own.id)
        clock.advance(minutes=5)
        lifecycle.soft_delete("order", order.id)

        lifecycle.restore("order", order.id)

        assert fetch(store, Order, order.id).is_active
        assert fetch(store, Expense, linked.id).is_active
        independent = fetch(store, Expense, own.id)
        assert independent.is_deleted == DeletionState.DELETED
        assert independent.cascade_deleted_from_id is None

    def test_cascaded_expense_cannot_be_restored_alone(
        self, records, lifecycle, project, order
    ):
        """Restoring a cascaded child first requires the parent back."""
        expense = records.create(
            "expense", project_id=project.id, order_id=order.id, title="x"
        )
        lifecycle.soft_delete("order", order.id)

        with pytest.raises(RestoreNotAllowed) as exc:
            lifecycle.restore("expense", expense.id)

        assert "order" in exc.value.reason

    def test_restore_clears_cascade_markers(self, store, records, lifecycle, project, order):
        expense = records.create(
            "expense", project_id=project.id, order_id=order.id, title="x"
        )
        lifecycle.soft_delete("order", order.id)
        lifecycle.restore("order", order.id)

        restored = fetch(store, Expense, expense.id)
        assert restored.cascade_deleted_from_type is None
        assert restored.cascade_deleted_from_id is None
        assert restored.deleted_at is None


class TestRestore:
    """Test bringing records back from the trash."""

    def test_restore_round_trip(self, store, records, lifecycle, client):
        """Restore returns every business field to its pre-delete value."""
        project = records.create(
            "project",
            client_id=client.id,
            name="Facade",
            status="Active",
            total_value=12500.0,
            address="Main St 1",
        )
        before = fetch(store, Project, project.id)

        lifecycle.soft_delete("project", project.id)
        restored = lifecycle.restore("project", project.id)

        assert restored.is_deleted == DeletionState.ACTIVE
        assert restored.deleted_at is None
        after = fetch(store, Project, project.id)
        for column in Project.__table__.columns.keys():
            assert getattr(after, column) == getattr(before, column), column

    def test_restore_project_scenario(self, store, lifecycle, client):
        """Restoring Project #42 removes it from the trash."""
        add(store, Project(id=42, client_id=client.id, name="Warehouse hall"))
        lifecycle.soft_delete("project", 42)

        lifecycle.restore("project", 42)

        project = fetch(store, Project, 42)
        assert project.is_deleted == DeletionState.ACTIVE
        assert project.deleted_at is None
        assert 42 not in [entry.id for entry in lifecycle.list_deleted().projects]

    def test_restore_active_record(self, lifecycle, project):
        """Restoring an active record is an error."""
        with pytest.raises(NotDeleted):
            lifecycle.restore("project", project.id)

        with pytest.raises(AlreadyActive):
            lifecycle.restore("project", project.id)

    def test_restore_missing_record(self, lifecycle):
        with pytest.raises(NotFound):
            lifecycle.restore("supplier", 12)

    def test_restore_project_of_deleted_client(self, store, lifecycle, client, project):
        """
        Restoring a project does not check its client, so a deleted client
        can end up owning an active project.
        """
        lifecycle.soft_delete("project", project.id)
        lifecycle.soft_delete("client", client.id)

        lifecycle.restore("project", project.id)

        assert fetch(store, Project, project.id).is_active
        assert not fetch(store, Client, client.id).is_active
        assert lifecycle.has_active_dependents("client", client.id) == 1


class TestPurge:
    """Test permanent removal and cleanup plans."""

    def test_purge_project_with_cost_estimate_scenario(self, store, lifecycle, client):
        """Purging Project #42 removes its 3 cost estimate lines."""
        add(store, Project(id=42, client_id=client.id, name="Warehouse hall"))
        for i in range(3):
            add(store, CostEstimateItem(project_id=42, description=f"Line {i}"))
        lifecycle.soft_delete("project", 42)

        result = lifecycle.purge("project", 42)

        assert result.removed["cost_estimate_items"] == 3
        assert fetch(store, Project, 42) is None
        assert count_rows(store, CostEstimateItem) == 0
        with pytest.raises(NotFound):
            lifecycle.restore("project", 42)

    def test_purge_project_removes_owned_records(
        self, store, records, lifecycle, client, project
    ):
        """Tasks, orders, expenses, resources and quotation lines go with it."""
        supplier = records.create("supplier", name="Timber Co")
        employee = records.create("employee", first_name="Jan", last_name="Nowak")
        records.update(
            "project", project.id, supplier_ids=[supplier.id], employee_ids=[employee.id]
        )
        sub = records.create(
            "project", client_id=client.id, name="Annex", parent_project_id=project.id
        )
        task = records.create("task", project_id=project.id, title="Plan")
        order = records.create("order", project_id=project.id, title="Nails", task_id=task.id)
        records.create("expense", project_id=project.id, order_id=order.id, title="Nails")
        records.create("resource", project_id=project.id, name="plan.pdf")
        records.create(
            "quotation_item", project_id=project.id, description="Labour", section="A"
        )

        result = lifecycle.purge("project", project.id)

        assert result.removed == {
            "expenses": 1,
            "tasks": 1,
            "orders": 1,
            "resources": 1,
            "quotation_items": 1,
            "cost_estimate_items": 0,
        }
        assert result.detached["subprojects"] == 1
        assert result.detached["project_suppliers"] == 1
        assert result.detached["project_employees"] == 1
        for model in (Task, Order, Expense, Resource, QuotationItem):
            assert count_rows(store, model) == 0
        assert fetch(store, Project, sub.id).parent_project_id is None
        assert fetch(store, Supplier, supplier.id) is not None
        assert fetch(store, Employee, employee.id) is not None
        assert count_rows(store, project_suppliers) == 0
        assert count_rows(store, project_employees) == 0

    def test_purge_is_allowed_for_active_records(self, store, lifecycle, project):
        lifecycle.purge("project", project.id)
        assert fetch(store, Project, project.id) is None

    def test_purge_missing_record(self, lifecycle):
        with pytest.raises(NotFound):
            lifecycle.purge("project", 77)

    def test_purge_client_with_deleted_projects_is_blocked(
        self, store, lifecycle, client, project
    ):
        """A purged client cannot leave projects behind, even deleted ones."""
        lifecycle.soft_delete("project", project.id)
        lifecycle.soft_delete("client", client.id)

        with pytest.raises(HasDependents) as exc:
            lifecycle.purge("client", client.id)

        assert exc.value.count == 1
        assert not isinstance(exc.value, HasActiveDependents)
        assert fetch(store, Client, client.id) is not None

    def test_purge_client_without_projects(self, store, records, lifecycle):
        client = records.create("client", name="Gone Ltd")
        lifecycle.soft_delete("client", client.id)

        lifecycle.purge("client", client.id)

        assert fetch(store, Client, client.id) is None

    def test_purge_supplier_detaches_orders(self, store, records, lifecycle, project):
        supplier = records.create("supplier", name="Bricks SA")
        order = records.create(
            "order", project_id=project.id, supplier_id=supplier.id, title="Bricks"
        )
        records.update("project", project.id, supplier_ids=[supplier.id])

        result = lifecycle.purge("supplier", supplier.id)

        assert result.detached == {"orders": 1, "project_suppliers": 1}
        assert fetch(store, Order, order.id).supplier_id is None
        assert fetch(store, Supplier, supplier.id) is None

    def test_purge_order_removes_its_expenses(self, store, records, lifecycle, project):
        order = records.create("order", project_id=project.id, title="Paint")
        records.create("expense", project_id=project.id, order_id=order.id, title="Paint")
        labour = records.create("expense", project_id=project.id, title="Labour")

        lifecycle.purge("order", order.id)

        assert count_rows(store, Expense) == 1
        assert fetch(store, Expense, labour.id) is not None

    def test_purge_task_detaches_orders(self, store, records, lifecycle, project):
        task = records.create("task", project_id=project.id, title="Buy paint")
        order = records.create(
            "order", project_id=project.id, task_id=task.id, title="Paint"
        )

        lifecycle.purge("task", task.id)

        assert fetch(store, Order, order.id).task_id is None

    def test_purge_tool_clears_assignments_and_protocols(
        self, store, records, lifecycle, clock
    ):
        """Tool purge clears the employee relation before removing the row."""
        employee = records.create("employee", first_name="Anna", last_name="Kowalska")
        tool = records.create("tool", name="Drill", employee_ids=[employee.id])
        records.save_protocol(tool.id, clock.now, "Inspector", "Passed")

        result = lifecycle.purge("tool", tool.id)

        assert result.detached == {"tool_employees": 1}
        assert result.removed == {"protocols": 1}
        assert count_rows(store, tool_employees) == 0
        assert count_rows(store, Protocol) == 0
        assert fetch(store, Employee, employee.id) is not None

    def test_purge_employee_clears_relations(self, store, records, lifecycle, project):
        employee = records.create("employee", first_name="Piotr", last_name="Zielinski")
        records.create("tool", name="Saw", employee_ids=[employee.id])
        records.update("project", project.id, employee_ids=[employee.id])
        records.create(
            "employee_permission",
            employee_id=employee.id,
            name="Work at height",
            issue_date=datetime(2023, 1, 10),
        )

        result = lifecycle.purge("employee", employee.id)

        assert result.removed == {"permissions": 1}
        assert count_rows(store, tool_employees) == 0
        assert count_rows(store, project_employees) == 0
        assert count_rows(store, EmployeePermission) == 0
        assert count_rows(store, Tool) == 1

    def test_purge_warehouse_item_removes_history(self, store, lifecycle):
        item = add(store, WarehouseItem(name="Screws", quantity=10))
        add(store, WarehouseHistoryItem(item_id=item.id, type="IN", quantity=10))

        lifecycle.purge("warehouse_item", item.id)

        assert count_rows(store, WarehouseHistoryItem) == 0
        assert fetch(store, WarehouseItem, item.id) is None

    def test_failed_cleanup_rolls_back_everything(
        self, store, records, lifecycle, project, monkeypatch
    ):
        """A failing cleanup step leaves no partial state behind."""
        records.create("expense", project_id=project.id, title="Fuel")
        records.create("task", project_id=project.id, title="Drive")
        real_delete_many = StoreTransaction.delete_many

        def failing_delete_many(self, model, **filters):
            if model is Task:
                raise StoreUnavailable("disk I/O error")
            return real_delete_many(self, model, **filters)

        monkeypatch.setattr(StoreTransaction, "delete_many", failing_delete_many)

        with pytest.raises(DependentCleanupFailed) as exc:
            lifecycle.purge("project", project.id)

        assert exc.value.step == "tasks"
        assert isinstance(exc.value.__cause__, StoreUnavailable)
        assert fetch(store, Project, project.id) is not None
        assert count_rows(store, Expense) == 1
        assert count_rows(store, Task) == 1


class TestTrash:
    """Test the trash aggregator."""

    def test_trash_lists_all_four_kinds(self, store, records, lifecycle, project):
        """Every deleted project, client, supplier and order is listed."""
        other_client = records.create("client", name="Old client")
        supplier = records.create("supplier", name="Old supplier")
        order = records.create("order", project_id=project.id, title="Old order")
        task = records.create("task", project_id=project.id, title="Old task")

        for kind, entity_id in [
            ("client", other_client.id),
            ("supplier", supplier.id),
            ("order", order.id),
            ("project", project.id),
            ("task", task.id),
        ]:
            lifecycle.soft_delete(kind, entity_id)

        snapshot = lifecycle.list_deleted()

        assert [e.id for e in snapshot.projects] == [project.id]
        assert [e.id for e in snapshot.clients] == [other_client.id]
        assert [e.id for e in snapshot.suppliers] == [supplier.id]
        assert [e.id for e in snapshot.orders] == [order.id]
        assert snapshot.total == 4
        assert snapshot.orders[0].label == "Old order"
        assert all(e.kind != EntityKind.TASK for e in snapshot.entries())

    def test_trash_excludes_active_records(self, records, lifecycle, client, project):
        snapshot = lifecycle.list_deleted()
        assert snapshot.total == 0

    def test_trash_orders_newest_first(self, records, lifecycle, client, clock):
        """Newest deletion first, ties broken by id descending."""
        p1 = records.create("project", client_id=client.id, name="P1")
        p2 = records.create("project", client_id=client.id, name="P2")
        p3 = records.create("project", client_id=client.id, name="P3")

        lifecycle.soft_delete("project", p1.id)
        lifecycle.soft_delete("project", p2.id)
        clock.advance(minutes=1)
        lifecycle.soft_delete("project", p3.id)

        ids = [e.id for e in lifecycle.list_deleted().projects]
        assert ids == [p3.id, p2.id, p1.id]

    def test_trash_insertion_order(self, store, records, client, clock):
        config = BizdeskConfig(
            environment="testing", trash_ordering=TrashOrdering.INSERTION
        )
        service = LifecycleService(store, config=config, clock=clock)
        p1 = records.create("project", client_id=client.id, name="P1")
        p2 = records.create("project", client_id=client.id, name="P2")

        service.soft_delete("project", p2.id)
        clock.advance(minutes=1)
        service.soft_delete("project", p1.id)

        assert [e.id for e in service.list_deleted().projects] == [p1.id, p2.id]


class TestHardDeleteService:
    """Test records without a trash."""

    def test_delete_cost_estimate_item(self, store, records, hard_delete, project):
        item = records.create(
            "cost_estimate_item", project_id=project.id, description="Scaffolding"
        )

        hard_delete.delete(HardDeleteKind.COST_ESTIMATE_ITEM, item.id)

        assert fetch(store, CostEstimateItem, item.id) is None

    def test_delete_missing_item(self, hard_delete):
        with pytest.raises(NotFound):
            hard_delete.delete("quotation_item", 5)

    def test_delete_rejects_soft_deletable_kind(self, hard_delete, project):
        with pytest.raises(ValueError):
            hard_delete.delete("project", project.id)

    def test_delete_quotation_section(self, store, records, hard_delete, project):
        for section in ("Roof", "Roof", "Walls"):
            records.create(
                "quotation_item",
                project_id=project.id,
                description=f"{section} work",
                section=section,
            )

        assert hard_delete.delete_quotation_section(project.id, "Roof") == 2
        assert count_rows(store, QuotationItem) == 1


class TestActivityLogging:
    """Test lifecycle events in the activity log."""

    def test_soft_delete_is_recorded(self, lifecycle, activity, project):
        lifecycle.soft_delete("project", project.id)

        entries = activity.recent(limit=5)
        assert len(entries) == 1
        assert entries[0].action == "SOFT_DELETE"
        assert entries[0].entity_kind == "project"
        assert entries[0].entity_id == project.id
        assert entries[0].details["label"] == "Roof repair"

    def test_blocked_delete_writes_nothing(self, store, lifecycle, client, project):
        with pytest.raises(HasActiveDependents):
            lifecycle.soft_delete("client", client.id)

        assert count_rows(store, ActivityEntry) == 0

    def test_history_of_one_record(self, lifecycle, activity, project, clock):
        lifecycle.soft_delete("project", project.id)
        clock.advance(seconds=30)
        lifecycle.restore("project", project.id)
        clock.advance(seconds=30)
        lifecycle.purge("project", project.id)

        actions = [e.action for e in activity.entity_history("project", project.id)]
        assert actions == ["SOFT_DELETE", "RESTORE", "PURGE"]

    def test_disabled_activity_log(self, store, activity, project, clock):
        config = BizdeskConfig(environment="testing", activity_log_enabled=False)
        service = LifecycleService(
            store, activity_logger=activity, config=config, clock=clock
        )

        service.soft_delete("project", project.id)

        assert count_rows(store, ActivityEntry) == 0
