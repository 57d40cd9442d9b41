"""Ledger queries and writes for changesets."""

from datetime import UTC, datetime

from kvmigrate.migrations.changeset import ChangeSetDescriptor
from kvmigrate.migrations.records import ChangeEntry, ChangeRecordStore


class ChangeTracker:
    """Decides whether a changeset is new and records successful ones.

    Applied status is always read back from the store; nothing is cached
    between calls or runs.
    """

    def __init__(self, records: ChangeRecordStore):
        self._records = records

    async def is_new(self, descriptor: ChangeSetDescriptor) -> bool:
        return not await self._records.exists(descriptor.id, descriptor.author)

    def is_run_always(self, descriptor: ChangeSetDescriptor) -> bool:
        return descriptor.run_always

    def create_entry(self, descriptor: ChangeSetDescriptor) -> ChangeEntry:
        return ChangeEntry(
            change_id=descriptor.id,
            author=descriptor.author,
            timestamp=datetime.now(UTC),
            changelog_class=descriptor.changelog_class,
            changeset_method=descriptor.method_name,
        )

    async def record_applied(self, descriptor: ChangeSetDescriptor) -> ChangeEntry:
        """Persist a ledger entry stamped with the current time.

        Only call this after the changeset operation succeeded. If another
        caller recorded the same pair first, the existing entry stands.
        """
        entry = self.create_entry(descriptor)
        await self._records.insert(entry)
        return entry
