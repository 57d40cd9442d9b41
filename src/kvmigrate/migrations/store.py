"""
Key-value store interface for the migration engine.

Provides an abstract interface for the point operations the engine needs
from its backing table: a lookup, an atomic create-if-absent and a delete
that can be made conditional on the stored attributes. No scans, no
multi-record transactions.

Implementations exist for an in-process dict (tests, dry runs), SQLite
(`aiosqlite`) and DynamoDB (`boto3`, see `dynamodb_store`).
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any

import aiosqlite

from kvmigrate.config.logging_config import get_logger
from kvmigrate.migrations.exceptions import ConfigurationError, MigrationConnectionError

log = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Item = dict[str, Any]


def _check_identifiers(*identifiers: str) -> None:
    for identifier in identifiers:
        if not _IDENTIFIER.match(identifier):
            raise ConfigurationError(f"Invalid SQLite identifier: {identifier!r}")


def _is_missing_table(error: Exception) -> bool:
    return isinstance(error, aiosqlite.OperationalError) and "no such table" in str(error)


class KeyValueStore(ABC):
    """Abstract store client used by the ledger and the process lock.

    Keys are strings; items are flat mappings of attribute name to a
    JSON-safe scalar. Every implementation must guarantee that
    `put_item_if_absent` never overwrites an existing record, since the
    process lock relies on it for mutual exclusion.

    Failures to reach the underlying storage are raised as
    `MigrationConnectionError`. Losing a conditional write is not a failure
    and is reported through the return value. A table that has not been
    created yet reads as empty: lookups return None and deletes return False.
    """

    @abstractmethod
    async def ensure_table(self) -> None:
        """Create the backing table if it does not exist yet."""
        pass

    @abstractmethod
    async def get_item(self, key: str) -> Item | None:
        """Fetch a single record.

        Args:
            key: Record key.

        Returns:
            The stored attributes, or None if there is no such record.
        """
        pass

    @abstractmethod
    async def put_item_if_absent(self, key: str, item: Item) -> bool:
        """Atomically create a record unless one exists under the key.

        Args:
            key: Record key.
            item: Attributes to store.

        Returns:
            True if the record was created, False if the key was taken.
        """
        pass

    @abstractmethod
    async def delete_item(self, key: str, expected: Item | None = None) -> bool:
        """Delete a record.

        Args:
            key: Record key.
            expected: When given, delete only if every listed attribute
                      matches the stored value.

        Returns:
            True if a record was removed.
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass

    @property
    @abstractmethod
    def backend(self) -> str:
        """Backend identifier (e.g. 'memory', 'sqlite', 'dynamodb')."""
        pass


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store backed by a dict.

    Operations contain no await points, so each one is atomic with respect
    to other coroutines on the same event loop. Several orchestrators
    sharing one instance behave like processes sharing one table.
    """

    def __init__(self) -> None:
        self.items: dict[str, Item] = {}

    async def ensure_table(self) -> None:
        pass

    async def get_item(self, key: str) -> Item | None:
        item = self.items.get(key)
        return dict(item) if item is not None else None

    async def put_item_if_absent(self, key: str, item: Item) -> bool:
        if key in self.items:
            return False
        self.items[key] = dict(item)
        return True

    async def delete_item(self, key: str, expected: Item | None = None) -> bool:
        current = self.items.get(key)
        if current is None:
            return False
        if expected and any(current.get(k) != v for k, v in expected.items()):
            return False
        del self.items[key]
        return True

    @property
    def backend(self) -> str:
        return "memory"


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite implementation of the key-value store.

    Each record is one row: the key column (named after the configured
    partition key) and a JSON document holding the attributes. Processes
    that open the same database file get real mutual exclusion through the
    primary key constraint.
    """

    def __init__(self, connection: aiosqlite.Connection, table_name: str, partition_key_name: str = "pk"):
        """Initialize with an aiosqlite connection.

        Args:
            connection: Open aiosqlite.Connection.
            table_name: Name of the changelog table.
            partition_key_name: Name of the key column.

        Raises:
            ConfigurationError: If a name is not a plain SQL identifier.
        """
        _check_identifiers(table_name, partition_key_name)
        self._conn = connection
        self._table = table_name
        self._pk = partition_key_name

    @classmethod
    async def open(
        cls,
        db_path: str,
        table_name: str,
        partition_key_name: str = "pk",
        timeout: float = 5.0,
    ) -> "SQLiteKeyValueStore":
        """Open a connection to `db_path` and wrap it."""
        _check_identifiers(table_name, partition_key_name)
        try:
            conn = await aiosqlite.connect(db_path, timeout=timeout)
        except aiosqlite.Error as e:
            raise MigrationConnectionError(f"Cannot open SQLite database {db_path}: {e}") from e
        return cls(conn, table_name, partition_key_name)

    async def ensure_table(self) -> None:
        try:
            await self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    {self._pk} TEXT PRIMARY KEY,
                    item TEXT NOT NULL
                )
                """
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise MigrationConnectionError(f"Cannot create table {self._table}: {e}") from e

    async def get_item(self, key: str) -> Item | None:
        try:
            cursor = await self._conn.execute(
                f"SELECT item FROM {self._table} WHERE {self._pk} = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            if _is_missing_table(e):
                return None
            raise MigrationConnectionError(f"Cannot read {key} from {self._table}: {e}") from e
        if row is None:
            return None
        return json.loads(row[0])

    async def put_item_if_absent(self, key: str, item: Item) -> bool:
        try:
            cursor = await self._conn.execute(
                f"""
                INSERT INTO {self._table} ({self._pk}, item)
                VALUES (?, ?)
                ON CONFLICT({self._pk}) DO NOTHING
                """,
                (key, json.dumps(item)),
            )
            created = cursor.rowcount > 0
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise MigrationConnectionError(f"Cannot write {key} to {self._table}: {e}") from e
        return created

    async def delete_item(self, key: str, expected: Item | None = None) -> bool:
        sql = f"DELETE FROM {self._table} WHERE {self._pk} = ?"
        params: list[Any] = [key]
        for attribute, value in (expected or {}).items():
            # Quoted JSON path so attribute names need no escaping rules
            sql += " AND json_extract(item, ?) = ?"
            params.extend([f'$."{attribute}"', value])
        try:
            cursor = await self._conn.execute(sql, tuple(params))
            deleted = cursor.rowcount > 0
            await self._conn.commit()
        except aiosqlite.Error as e:
            if _is_missing_table(e):
                return False
            raise MigrationConnectionError(f"Cannot delete {key} from {self._table}: {e}") from e
        return deleted

    async def close(self) -> None:
        await self._conn.close()

    @property
    def backend(self) -> str:
        return "sqlite"


async def create_store(
    backend: str,
    table_name: str,
    partition_key_name: str = "pk",
    db_path: str | None = None,
    region: str | None = None,
    endpoint_url: str | None = None,
) -> KeyValueStore:
    """Factory function to create a key-value store for a backend name.

    Args:
        backend: 'sqlite', 'dynamodb' or 'memory'
        table_name: Name of the changelog table
        partition_key_name: Name of the key attribute/column
        db_path: SQLite database file (sqlite only)
        region: AWS region (dynamodb only)
        endpoint_url: Custom DynamoDB endpoint (dynamodb only)

    Returns:
        KeyValueStore implementation.

    Raises:
        ConfigurationError: If the backend is unknown or lacks settings.
    """
    backend = backend.lower()
    log.debug(f"Creating {backend} store for table {table_name}")
    if backend == "memory":
        return MemoryKeyValueStore()
    if backend == "sqlite":
        if not db_path:
            raise ConfigurationError("SQLite backend requires a database path")
        return await SQLiteKeyValueStore.open(db_path, table_name, partition_key_name)
    if backend == "dynamodb":
        from kvmigrate.migrations.dynamodb_store import DynamoDBKeyValueStore

        return DynamoDBKeyValueStore.from_settings(
            table_name,
            partition_key_name,
            region=region,
            endpoint_url=endpoint_url,
        )
    raise ConfigurationError(f"Unsupported store backend: {backend}. Expected sqlite, dynamodb or memory.")
