"""
Migration orchestrator for kvmigrate.

Drives one migration run:
- validates the configuration
- takes the process lock (or steps aside if another instance holds it)
- walks migration units in discovery order and their changesets in
  `order` order, applying new ones, re-running run-always ones and
  skipping the rest
- releases the lock on every exit path

Each changeset is its own unit of durability. A failing changeset is logged
and left unrecorded so the next run retries it; it does not stop the run.
A unit that cannot be resolved stops the run.
"""

import inspect
from enum import Enum
from typing import Any

from kvmigrate.config.logging_config import get_logger
from kvmigrate.migrations.changeset import ChangeLogSource, ChangeSet, sort_changesets
from kvmigrate.migrations.config import MigrationConfig
from kvmigrate.migrations.discovery import PackageChangeLogScanner
from kvmigrate.migrations.exceptions import (
    ChangeSetError,
    ChangeSetExecutionError,
    ChangeSetSignatureError,
    MigrationError,
    MigrationUnitError,
)
from kvmigrate.migrations.lock import LockManager
from kvmigrate.migrations.records import ChangeRecordStore, ProcessLock
from kvmigrate.migrations.store import KeyValueStore
from kvmigrate.migrations.tracker import ChangeTracker

log = get_logger(__name__)


class RunState(str, Enum):
    """Where an orchestrator is within `execute()`."""

    IDLE = "idle"
    VALIDATING_CONFIG = "validating_config"
    ACQUIRING_LOCK = "acquiring_lock"
    RUNNING = "running"
    FAILED = "failed"
    RELEASING_LOCK = "releasing_lock"
    DONE = "done"


class MigrationOrchestrator:
    """Runs changesets exactly once each, one process at a time.

    Example:
        store = await SQLiteKeyValueStore.open("app.db", "kvmigrate_changelog")
        config = MigrationConfig(scan_target="myapp.changelogs")
        await MigrationOrchestrator(store, config).execute()

        # Several instances may start at once; only one migrates, the
        # others return without doing anything.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: MigrationConfig,
        source: ChangeLogSource | None = None,
        client: Any = None,
        owner: str | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            store: Key-value store holding ledger and lock records
            config: Run configuration
            source: Supplies migration units. Defaults to scanning
                    `config.scan_target`.
            client: Handle passed to one-argument changesets. Defaults to
                    the store.
            owner: Lock owner token. Defaults to host, pid and a random
                   suffix.
        """
        self.config = config
        self._records = ChangeRecordStore(store)
        self._lock = LockManager(self._records, config, owner=owner)
        self._tracker = ChangeTracker(self._records)
        self._source = source
        self.client = client if client is not None else store
        self.state = RunState.IDLE

    @property
    def lock(self) -> LockManager:
        return self._lock

    @property
    def tracker(self) -> ChangeTracker:
        return self._tracker

    def _get_source(self) -> ChangeLogSource:
        if self._source is None:
            assert self.config.scan_target is not None
            self._source = PackageChangeLogScanner(self.config.scan_target, self.config.environment_filter)
        return self._source

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def execute(self) -> None:
        """Run the migration.

        Returns normally when the run is disabled or another process holds
        the lock (unless strict mode is configured).

        Raises:
            ConfigurationError: If the scan target is missing
            MigrationConnectionError: If the store cannot be reached
            LockUnavailableError: If the lock is busy and
                `throw_exception_if_cannot_obtain_lock` is set
            MigrationUnitError: If a migration unit cannot be resolved
        """
        self.state = RunState.IDLE
        if not self.config.enabled:
            log.info("kvmigrate is disabled. Exiting.")
            return

        try:
            self.state = RunState.VALIDATING_CONFIG
            self.config.validate_for_run()
            await self._records.ensure_table()

            self.state = RunState.ACQUIRING_LOCK
            acquired = await self._lock.acquire()
        except Exception:
            self.state = RunState.FAILED
            raise

        if not acquired:
            log.info("kvmigrate did not acquire process lock. Exiting.")
            self.state = RunState.DONE
            return

        log.info("kvmigrate acquired process lock, starting the data migration sequence..")
        self.state = RunState.RUNNING
        failed = True
        try:
            await self._execute_migration()
            failed = False
        except Exception as e:
            log.error(f"kvmigrate migration failed: {e}", exc_info=True)
            raise
        finally:
            release_error = await self._release_lock()
            self.state = RunState.FAILED if failed or release_error is not None else RunState.DONE
            # A failed run keeps its own error; the release error is only logged
            if release_error is not None and not failed:
                raise release_error

        log.info("kvmigrate has finished its job.")

    async def _release_lock(self) -> Exception | None:
        """Release the lock and return the error instead of raising it."""
        self.state = RunState.RELEASING_LOCK
        log.info("kvmigrate is releasing process lock.")
        try:
            await self._lock.release()
        except Exception as e:
            log.error(f"kvmigrate could not release process lock: {e}", exc_info=True)
            return e
        return None

    async def _fetch_units(self) -> list:
        try:
            units = self._get_source().fetch_units()
            if inspect.isawaitable(units):
                units = await units
        except MigrationError:
            raise
        except Exception as e:
            raise MigrationUnitError(f"Cannot fetch migration units: {e}") from e
        return list(units)

    async def _resolve_unit(self, unit) -> list[ChangeSet]:
        try:
            changesets = unit.resolve()
            if inspect.isawaitable(changesets):
                changesets = await changesets
        except MigrationUnitError:
            raise
        except Exception as e:
            raise MigrationUnitError(f"Cannot resolve changesets of {unit.name}: {e}", unit_name=unit.name) from e
        return sort_changesets(changesets)

    async def _execute_migration(self) -> None:
        for unit in await self._fetch_units():
            log.debug(f"Processing changelog {unit.name}")
            for changeset in await self._resolve_unit(unit):
                descriptor = changeset.descriptor
                try:
                    if await self._tracker.is_new(descriptor):
                        await self._execute_changeset(changeset)
                        entry = await self._tracker.record_applied(descriptor)
                        log.info(f"{entry} applied")
                    elif self._tracker.is_run_always(descriptor):
                        await self._execute_changeset(changeset)
                        log.info(f"{self._tracker.create_entry(descriptor)} reapplied")
                    else:
                        log.info(f"{self._tracker.create_entry(descriptor)} passed over")
                except ChangeSetError as e:
                    log.error(str(e))

    # -------------------------------------------------------------------------
    # Changeset invocation
    # -------------------------------------------------------------------------

    def _build_arguments(self, changeset: ChangeSet) -> tuple:
        """Work out how to call a changeset handle.

        Accepted shapes: no parameters, or exactly one parameter that
        receives the store client.

        Raises:
            ChangeSetSignatureError: For any other signature
        """
        descriptor = changeset.descriptor
        try:
            params = list(inspect.signature(changeset.handle).parameters.values())
        except (TypeError, ValueError) as e:
            raise ChangeSetSignatureError(
                f"ChangeSet method {descriptor.method_name} cannot be inspected: {e}",
                change_id=descriptor.id,
            ) from e

        if not params:
            log.debug("method with no params")
            return ()

        if len(params) == 1 and params[0].kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            annotation = params[0].annotation
            if (
                annotation is not inspect.Parameter.empty
                and isinstance(annotation, type)
                and not isinstance(self.client, annotation)
            ):
                raise ChangeSetSignatureError(
                    f"ChangeSet method {descriptor.method_name} expects {annotation.__name__}, "
                    f"but the store client is {type(self.client).__name__}",
                    change_id=descriptor.id,
                )
            log.debug("method with store client argument")
            return (self.client,)

        raise ChangeSetSignatureError(
            f"ChangeSet method {descriptor.method_name} has wrong arguments list. "
            "It must take no arguments or only the store client.",
            change_id=descriptor.id,
        )

    async def _execute_changeset(self, changeset: ChangeSet) -> None:
        descriptor = changeset.descriptor
        args = self._build_arguments(changeset)
        try:
            result = changeset.handle(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise ChangeSetExecutionError(
                f"ChangeSet {descriptor.id} by {descriptor.author} "
                f"({descriptor.changelog_class}.{descriptor.method_name}) failed: {e}",
                change_id=descriptor.id,
            ) from e

    # -------------------------------------------------------------------------
    # Status and info
    # -------------------------------------------------------------------------

    async def is_execution_in_progress(self) -> bool:
        """True if a migration is running in any process."""
        return await self._lock.is_held()

    async def current_lock(self) -> ProcessLock | None:
        """The lock record, or None when no run is in progress."""
        return await self._lock.current()

    async def force_release_lock(self) -> bool:
        """Remove a lock left behind by a crashed process."""
        return await self._lock.force_release()

    async def status(self) -> dict[str, Any]:
        """Get the current migration status.

        Uses point lookups only, one per discovered changeset.

        Returns:
            Dictionary with:
            - lock: holder and acquisition time, or None
            - changesets: every discovered changeset with its applied state
        """
        self.config.validate_for_run()
        lock = await self._lock.current()
        changesets = []
        for unit in await self._fetch_units():
            for changeset in await self._resolve_unit(unit):
                descriptor = changeset.descriptor
                entry = await self._records.get(descriptor.id, descriptor.author)
                changesets.append(
                    {
                        "id": descriptor.id,
                        "author": descriptor.author,
                        "order": descriptor.order,
                        "changelog": descriptor.changelog_class,
                        "method": descriptor.method_name,
                        "run_always": descriptor.run_always,
                        "applied": entry is not None,
                        "applied_at": entry.timestamp.isoformat() if entry else None,
                    }
                )
        return {
            "lock": {"owner": lock.owner, "acquired_at": lock.acquired_at.isoformat()} if lock else None,
            "changesets": changesets,
        }
