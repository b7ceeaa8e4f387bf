"""
Tests for the entity store and the soft delete mixin.
"""

from datetime import datetime

import pytest
from sqlalchemy import inspect, text

from bizdesk.db import Client, DeletionState, Employee, EntityStore, Project, Supplier
from bizdesk.exceptions import AlreadyDeleted, NotDeleted, NotFound, StoreUnavailable


class TestSoftDeleteMixin:
    """Test state transitions on a single record."""

    def test_mark_deleted_sets_timestamp(self):
        client = Client(id=1, name="ACME", is_deleted=DeletionState.ACTIVE)
        at = datetime(2024, 1, 2, 3, 4, 5)

        client.mark_deleted(at)

        assert client.is_deleted == DeletionState.DELETED
        assert client.deleted_at == at
        assert client.cascade_deleted_from_type is None

    def test_mark_deleted_with_cascade_origin(self):
        client = Client(id=1, name="ACME", is_deleted=DeletionState.ACTIVE)

        client.mark_deleted(datetime(2024, 1, 1), cascade_from=("order", 9))

        assert client.cascade_deleted_from_type == "order"
        assert client.cascade_deleted_from_id == 9

    def test_mark_deleted_twice(self):
        client = Client(id=1, name="ACME", is_deleted=DeletionState.ACTIVE)
        client.mark_deleted(datetime(2024, 1, 1))

        with pytest.raises(AlreadyDeleted):
            client.mark_deleted(datetime(2024, 1, 2))

    def test_mark_restored_active_record(self):
        client = Client(id=1, name="ACME", is_deleted=DeletionState.ACTIVE)

        with pytest.raises(NotDeleted):
            client.mark_restored()

    def test_select_builders(self, store):
        with store.transaction() as tx:
            tx.add(Client(name="Active"))
            gone = tx.add(Client(name="Gone"))
            gone.mark_deleted(datetime(2024, 1, 1))

        with store.transaction() as tx:
            active = tx.scalars(Client.select_active())
            deleted = tx.scalars(Client.select_deleted())

        assert [c.name for c in active] == ["Active"]
        assert [c.name for c in deleted] == ["Gone"]


class TestStoreTransaction:
    """Test store primitives."""

    def test_find_missing_returns_none(self, store):
        with store.transaction() as tx:
            assert tx.find(Client, 1) is None
            assert tx.find(Client, 1, lock=True) is None

    def test_update_missing_raises(self, store):
        with pytest.raises(NotFound):
            with store.transaction() as tx:
                tx.update(Client, 5, {"name": "X"})

    def test_update_unknown_field(self, store):
        with store.transaction() as tx:
            client = tx.add(Client(name="ACME"))

        with pytest.raises(AttributeError):
            with store.transaction() as tx:
                tx.update(Client, client.id, {"colour": "red"})

    def test_update_rejects_plain_property(self, store):
        """Only mapped attributes can be patched."""
        with store.transaction() as tx:
            employee = tx.add(Employee(first_name="Jan", last_name="Nowak"))

        with pytest.raises(AttributeError, match="Employee has no field 'name'"):
            with store.transaction() as tx:
                tx.update(Employee, employee.id, {"name": "Adam Lis"})

    def test_delete_missing_raises(self, store):
        with pytest.raises(NotFound):
            with store.transaction() as tx:
                tx.delete(Supplier, 3)

    def test_count_with_filters(self, store):
        with store.transaction() as tx:
            client = tx.add(Client(name="ACME"))
            for name in ("A", "B", "C"):
                tx.add(Project(client_id=client.id, name=name))

        with store.transaction() as tx:
            assert tx.count(Project, client_id=client.id) == 3
            assert tx.count(Project, name=["A", "B"]) == 2
            assert tx.count(Project, parent_project_id=None) == 3

    def test_deletion_state_stored_as_integer(self, store):
        """Existing consumers read the raw 0/1 flag."""
        with store.transaction() as tx:
            client = tx.add(Client(name="ACME"))
            client.mark_deleted(datetime(2024, 1, 1))

        with store.transaction() as tx:
            raw = tx.session.execute(
                text("SELECT is_deleted FROM clients WHERE id = :id"),
                {"id": client.id},
            ).scalar_one()
        assert raw == 1


class TestIntegrity:
    """Test constraints enforced by the database."""

    def test_inconsistent_deletion_state_is_rejected(self, store):
        """A deleted row without a timestamp violates the CHECK constraint."""
        with pytest.raises(StoreUnavailable):
            with store.transaction() as tx:
                tx.add(Client(name="Broken", is_deleted=DeletionState.DELETED))

        with store.transaction() as tx:
            assert tx.count(Client) == 0

    def test_foreign_key_violation(self, store):
        with pytest.raises(StoreUnavailable):
            with store.transaction() as tx:
                tx.add(Project(client_id=999, name="Orphan"))

    def test_session_delete_is_refused(self, store):
        """Soft-deletable rows cannot be removed through the unit of work."""
        with store.transaction() as tx:
            client = tx.add(Client(name="ACME"))

        with pytest.raises(RuntimeError, match="Hard delete attempted"):
            with store.transaction() as tx:
                tx.session.delete(tx.find(Client, client.id))
                tx.session.flush()

        with store.transaction() as tx:
            assert tx.find(Client, client.id) is not None


class TestEntityStore:
    """Test transaction boundaries."""

    def test_rollback_on_error(self, store):
        with pytest.raises(ValueError):
            with store.transaction() as tx:
                tx.add(Client(name="Temporary"))
                raise ValueError("abort")

        with store.transaction() as tx:
            assert tx.count(Client) == 0

    def test_create_all_creates_tables(self, store):
        tables = set(inspect(store.engine).get_table_names())
        assert {"clients", "projects", "orders", "expenses", "activity_log"} <= tables

    def test_file_database(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'bizdesk.db'}"
        store = EntityStore.from_url(url)
        store.create_all()
        try:
            with store.transaction() as tx:
                tx.add(Client(name="Persisted"))

            with store.transaction() as tx:
                assert tx.count(Client) == 1
        finally:
            store.dispose()
