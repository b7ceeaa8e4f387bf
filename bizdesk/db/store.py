"""
Entity store built on SQLAlchemy sessions.

The store is constructed explicitly and handed to the services that need it.
Every unit of work runs inside ``EntityStore.transaction()``, which commits on
success and rolls back on any error, so a lifecycle operation either applies
completely or not at all.
"""

import logging
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Iterator, List, Optional, Type, TypeVar

from sqlalchemy import (
    Table,
    create_engine,
    delete,
    event,
    func,
    inspect,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import Select

from ..exceptions import NotFound, StoreUnavailable
from .base import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


def _kind_of(model: Type[Any]) -> str:
    return getattr(model, "kind_name", model.__name__)


def _translate_errors(method: F) -> F:
    """Re-raise SQLAlchemy failures as ``StoreUnavailable``."""

    @wraps(method)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return method(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Store operation {method.__name__} failed: {e}")
            raise StoreUnavailable(f"{method.__name__} failed: {e}") from e

    return wrapper  # type: ignore[return-value]


class StoreTransaction:
    """
    Store primitives bound to one open session.

    Filters are keyword equality matches on mapped attributes; a list or tuple
    value matches any of its members.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _where(model: Type[Any], filters: Dict[str, Any]) -> List[Any]:
        clauses = []
        for name, value in filters.items():
            column = getattr(model, name)
            if isinstance(value, (list, tuple)):
                clauses.append(column.in_(value))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == value)
        return clauses

    @_translate_errors
    def find(
        self, model: Type[T], entity_id: int, lock: bool = False, shared: bool = False
    ) -> Optional[T]:
        """
        Load one record by id.

        Args:
            model: Mapped class
            entity_id: Primary key
            lock: Read the row FOR UPDATE where the database supports it
            shared: With ``lock``, take a shared (FOR SHARE) lock instead

        Returns:
            The record, or None when absent
        """
        if not lock:
            return self.session.get(model, entity_id)
        stmt = (
            select(model)
            .where(model.id == entity_id)  # type: ignore[attr-defined]
            .with_for_update(read=shared)
        )
        return self.session.scalars(stmt).first()

    @_translate_errors
    def find_many(
        self, model: Type[T], order_by: Optional[Any] = None, **filters: Any
    ) -> List[T]:
        stmt = select(model).where(*self._where(model, filters))
        if isinstance(order_by, (list, tuple)):
            stmt = stmt.order_by(*order_by)
        elif order_by is not None:
            stmt = stmt.order_by(order_by)
        return list(self.session.scalars(stmt).all())

    @_translate_errors
    def scalars(self, stmt: Select[Any]) -> List[Any]:
        return list(self.session.scalars(stmt).all())

    @_translate_errors
    def count(self, model: Type[Any], **filters: Any) -> int:
        stmt = (
            select(func.count())
            .select_from(model)
            .where(*self._where(model, filters))
        )
        return int(self.session.execute(stmt).scalar_one())

    @_translate_errors
    def add(self, record: T) -> T:
        """Add a new record and flush so its id is assigned."""
        self.session.add(record)
        self.session.flush()
        return record

    @_translate_errors
    def flush(self) -> None:
        self.session.flush()

    @_translate_errors
    def update(self, model: Type[T], entity_id: int, patch: Dict[str, Any]) -> T:
        record = self.session.get(model, entity_id)
        if record is None:
            raise NotFound(_kind_of(model), entity_id)
        mapped = inspect(model).attrs
        for name, value in patch.items():
            # Plain properties such as Employee.name are not fields
            if name not in mapped:
                raise AttributeError(f"{model.__name__} has no field '{name}'")
            setattr(record, name, value)
        self.session.flush()
        return record

    @_translate_errors
    def delete(self, model: Type[Any], entity_id: int) -> None:
        """Remove one row permanently."""
        result = self.session.execute(
            delete(model).where(model.id == entity_id)  # type: ignore[attr-defined]
        )
        if result.rowcount == 0:
            raise NotFound(_kind_of(model), entity_id)

    @_translate_errors
    def delete_many(self, model: Type[Any], **filters: Any) -> int:
        result = self.session.execute(
            delete(model)
            .where(*self._where(model, filters))
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    @_translate_errors
    def update_many(
        self, model: Type[Any], patch: Dict[str, Any], **filters: Any
    ) -> int:
        result = self.session.execute(
            update(model)
            .where(*self._where(model, filters))
            .values(**patch)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    @_translate_errors
    def clear_association(self, table: Table, **filters: Any) -> int:
        """Delete association rows (many-to-many links) matching the filters."""
        clauses = [table.c[name] == value for name, value in filters.items()]
        self.session.flush()
        result = self.session.execute(delete(table).where(*clauses))
        # Collections loaded before the DELETE would be stale
        self.session.expire_all()
        return int(result.rowcount or 0)


class EntityStore:
    """
    Transactional access to Bizdesk records.

    Example:
        >>> store = EntityStore.from_url("sqlite:///bizdesk.db")
        >>> store.create_all()
        >>> with store.transaction() as tx:
        ...     client = tx.find(Client, 7)
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(
        cls, url: str, echo: bool = False, sqlite_foreign_keys: bool = True
    ) -> "EntityStore":
        """
        Build a store for a database URL.

        In-memory SQLite URLs share one connection so that every transaction
        sees the same database.
        """
        kwargs: Dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)

        if url.startswith("sqlite") and sqlite_foreign_keys:
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)

        return cls(engine)

    def create_all(self) -> None:
        """Create all record tables that do not exist yet."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create tables: {e}")
            raise StoreUnavailable(f"Failed to create tables: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """
        Run a unit of work in one database transaction.

        Yields:
            Store primitives bound to the transaction's session

        Raises:
            StoreUnavailable: If opening or committing the transaction fails
        """
        session = self._session_factory()
        try:
            yield StoreTransaction(session)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Transaction failed: {e}")
            raise StoreUnavailable(f"Transaction failed: {e}") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
