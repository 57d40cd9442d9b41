"""
Process lock serializing migration runs across a fleet.

The lock is a single record created with the store's create-if-absent
primitive and removed with a delete conditioned on the owner token. There is
no lease expiry: a process that dies while holding the lock leaves the
record behind until an operator removes it (`force_release`).
"""

import asyncio
import os
import socket
import time
import uuid
from datetime import UTC, datetime

from kvmigrate.config.logging_config import get_logger
from kvmigrate.migrations.config import MigrationConfig
from kvmigrate.migrations.exceptions import LockUnavailableError
from kvmigrate.migrations.records import ChangeRecordStore, ProcessLock

log = get_logger(__name__)


def default_owner_token() -> str:
    """Token identifying this process: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LockManager:
    """Acquires, releases and inspects the global migration lock."""

    def __init__(self, records: ChangeRecordStore, config: MigrationConfig, owner: str | None = None):
        self._records = records
        self._config = config
        self.owner = owner or default_owner_token()
        self._held = False

    @property
    def held_by_me(self) -> bool:
        return self._held

    async def _try_acquire(self) -> bool:
        lock = ProcessLock(owner=self.owner, acquired_at=datetime.now(UTC))
        if await self._records.create_lock(lock):
            self._held = True
            log.debug(f"Migration lock acquired by {self.owner}")
            return True
        return False

    async def acquire(self) -> bool:
        """Acquire the migration lock.

        Without `wait_for_lock` a single attempt is made. With it, the lock
        is retried every `lock_poll_rate` seconds until `lock_wait_time`
        minutes have passed.

        Returns:
            True if the lock is now held by this process, False otherwise

        Raises:
            LockUnavailableError: If the lock was not obtained and
                `throw_exception_if_cannot_obtain_lock` is set
            MigrationConnectionError: If the store cannot be reached
        """
        if await self._try_acquire():
            return True

        if self._config.wait_for_lock:
            deadline = time.monotonic() + self._config.lock_wait_time * 60
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                log.info(f"Migration lock is held by another process, retrying in {self._config.lock_poll_rate}s")
                await asyncio.sleep(min(self._config.lock_poll_rate, remaining))
                if await self._try_acquire():
                    return True
            # One last attempt at the deadline
            if await self._try_acquire():
                return True

        current = await self._records.get_lock()
        holder = current.owner if current else None
        if self._config.throw_exception_if_cannot_obtain_lock:
            raise LockUnavailableError(
                f"Could not acquire migration lock; it is held by {holder or 'another process'}",
                owner=holder,
            )
        log.debug(f"Migration lock not acquired, holder: {holder}")
        return False

    async def release(self) -> None:
        """Release the lock if this process holds it.

        Calling it again, or without holding the lock, does nothing. The
        delete is conditioned on the owner token, so a record created by
        another process is never removed.
        """
        if not self._held:
            return
        deleted = await self._records.delete_lock(self.owner)
        self._held = False
        if deleted:
            log.debug(f"Migration lock released by {self.owner}")
        else:
            log.warning(f"Migration lock owned by {self.owner} was already gone on release")

    async def is_held(self) -> bool:
        """True if any process holds the lock. Read-only."""
        return await self._records.get_lock() is not None

    async def current(self) -> ProcessLock | None:
        return await self._records.get_lock()

    async def force_release(self) -> bool:
        """Remove the lock record whoever holds it (manual recovery)."""
        current = await self._records.get_lock()
        deleted = await self._records.force_delete_lock()
        if deleted:
            log.warning(f"Migration lock held by {current.owner if current else 'unknown'} was force released")
        self._held = False
        return deleted
