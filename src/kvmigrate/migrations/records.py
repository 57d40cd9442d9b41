"""
Persisted record types and the changelog table wrapper.

The changelog table holds two kinds of records:

- one ChangeEntry per applied changeset, keyed by (change_id, author)
- at most one ProcessLock, under a fixed key

Both are only ever created or deleted, never updated in place.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from kvmigrate.migrations.store import KeyValueStore

LOCK_KEY = "lock:process"
CHANGE_KEY_PREFIX = "change:"


def change_key(change_id: str, author: str) -> str:
    """Return the record key for a (change_id, author) pair."""
    # JSON keeps the pair unambiguous whatever characters the parts contain
    return CHANGE_KEY_PREFIX + json.dumps([change_id, author])


@dataclass(frozen=True)
class ChangeEntry:
    """Ledger record proving a changeset has been applied.

    Attributes:
        change_id: Changeset id, unique together with author
        author: Logical owner of the changeset
        timestamp: When the record was persisted
        changelog_class: Identifier of the owning migration unit
        changeset_method: Identifier of the changeset within the unit
    """

    change_id: str
    author: str
    timestamp: datetime
    changelog_class: str
    changeset_method: str

    @property
    def key(self) -> str:
        return change_key(self.change_id, self.author)

    def to_item(self) -> dict[str, Any]:
        return {
            "change_id": self.change_id,
            "author": self.author,
            "timestamp": self.timestamp.isoformat(),
            "changelog_class": self.changelog_class,
            "changeset_method": self.changeset_method,
        }

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "ChangeEntry":
        return cls(
            change_id=item["change_id"],
            author=item["author"],
            timestamp=datetime.fromisoformat(item["timestamp"]),
            changelog_class=item["changelog_class"],
            changeset_method=item["changeset_method"],
        )

    def __str__(self) -> str:
        return (
            f"[ChangeSet: id={self.change_id}, author={self.author}, "
            f"changeLogClass={self.changelog_class}, changeSetMethod={self.changeset_method}]"
        )


@dataclass(frozen=True)
class ProcessLock:
    """The global migration lock record.

    Attributes:
        owner: Token identifying the holding process
        acquired_at: When the lock was taken, for diagnostics
    """

    owner: str
    acquired_at: datetime

    def to_item(self) -> dict[str, Any]:
        return {"owner": self.owner, "acquired_at": self.acquired_at.isoformat()}

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> "ProcessLock":
        acquired_at = item.get("acquired_at")
        return cls(
            owner=item.get("owner", ""),
            acquired_at=datetime.fromisoformat(acquired_at) if acquired_at else datetime.now(UTC),
        )


class ChangeRecordStore:
    """Point operations on the changelog table for ledger and lock records."""

    def __init__(self, store: KeyValueStore):
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    async def ensure_table(self) -> None:
        await self._store.ensure_table()

    async def exists(self, change_id: str, author: str) -> bool:
        """True if a ledger entry exists for the pair (point lookup)."""
        return await self._store.get_item(change_key(change_id, author)) is not None

    async def get(self, change_id: str, author: str) -> ChangeEntry | None:
        item = await self._store.get_item(change_key(change_id, author))
        return ChangeEntry.from_item(item) if item is not None else None

    async def insert(self, entry: ChangeEntry) -> bool:
        """Persist a ledger entry.

        A duplicate key means another caller already recorded the same
        changeset, which is the desired end state, so it is not an error.

        Returns:
            True if this call created the record.
        """
        return await self._store.put_item_if_absent(entry.key, entry.to_item())

    async def create_lock(self, lock: ProcessLock) -> bool:
        """Create the lock record unless one exists."""
        return await self._store.put_item_if_absent(LOCK_KEY, lock.to_item())

    async def get_lock(self) -> ProcessLock | None:
        item = await self._store.get_item(LOCK_KEY)
        return ProcessLock.from_item(item) if item is not None else None

    async def delete_lock(self, owner: str) -> bool:
        """Delete the lock record only if `owner` holds it."""
        return await self._store.delete_item(LOCK_KEY, expected={"owner": owner})

    async def force_delete_lock(self) -> bool:
        """Delete the lock record whoever holds it."""
        return await self._store.delete_item(LOCK_KEY)
