"""
Bizdesk - record lifecycle and trash management for a business back office.

Bizdesk keeps the records of a small contracting business (clients, suppliers,
projects with their tasks, orders, expenses and resources, warehouse stock,
tools and employees) and manages how they move between the active state, the
trash and permanent removal without breaking the references between them.

Key Features
------------
* **Soft delete**: records go to the trash and can be restored
* **Referential guard**: a client with active projects cannot be deleted
* **Cascades**: an order takes its expenses to the trash and back
* **Purge**: permanent removal together with strictly owned records
* **Trash view**: deleted projects, clients, suppliers and orders
* **Activity log**: every lifecycle change recorded in the same transaction

Quick Start
-----------
>>> from bizdesk import EntityStore, LifecycleService, RecordService
>>>
>>> store = EntityStore.from_url("sqlite:///bizdesk.db")
>>> store.create_all()
>>> records = RecordService(store)
>>> client = records.create("client", name="ACME")
>>>
>>> lifecycle = LifecycleService(store)
>>> lifecycle.soft_delete("client", client.id)
>>> lifecycle.list_deleted().clients
"""

__version__ = "1.0.0"

# Import main components for easy access
from .activity import ActivityLogger
from .config import BizdeskConfig, configure, get_config
from .db import EntityStore
from .exceptions import LifecycleError
from .lifecycle import (
    EntityKind,
    HardDeleteKind,
    HardDeleteService,
    LifecycleService,
)
from .records import RecordService

__all__ = [
    # Store
    "EntityStore",
    # Lifecycle
    "LifecycleService",
    "HardDeleteService",
    "EntityKind",
    "HardDeleteKind",
    "LifecycleError",
    # Records
    "RecordService",
    # Activity
    "ActivityLogger",
    # Configuration
    "BizdeskConfig",
    "get_config",
    "configure",
]
