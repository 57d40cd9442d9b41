"""
Data migration engine for key-value stores.

Applies changesets exactly once each, in a defined order, while a
store-backed process lock keeps concurrent instances from migrating at the
same time.
"""

from kvmigrate.migrations.changeset import (
    ChangeSet,
    ChangeSetDescriptor,
    MigrationUnit,
    StaticChangeLogSource,
    changelog,
    changeset,
)
from kvmigrate.migrations.config import MigrationConfig
from kvmigrate.migrations.exceptions import (
    ChangeSetError,
    ChangeSetExecutionError,
    ChangeSetSignatureError,
    ConfigurationError,
    LockUnavailableError,
    MigrationConnectionError,
    MigrationError,
    MigrationUnitError,
)
from kvmigrate.migrations.records import ChangeEntry, ChangeRecordStore, ProcessLock
from kvmigrate.migrations.runner import MigrationOrchestrator, RunState
from kvmigrate.migrations.store import (
    KeyValueStore,
    MemoryKeyValueStore,
    SQLiteKeyValueStore,
    create_store,
)

__all__ = [
    "ChangeEntry",
    "ChangeRecordStore",
    "ChangeSet",
    "ChangeSetDescriptor",
    "ChangeSetError",
    "ChangeSetExecutionError",
    "ChangeSetSignatureError",
    "ConfigurationError",
    "KeyValueStore",
    "LockUnavailableError",
    "MemoryKeyValueStore",
    "MigrationConfig",
    "MigrationConnectionError",
    "MigrationError",
    "MigrationOrchestrator",
    "MigrationUnit",
    "MigrationUnitError",
    "ProcessLock",
    "RunState",
    "SQLiteKeyValueStore",
    "StaticChangeLogSource",
    "changelog",
    "changeset",
    "create_store",
]
