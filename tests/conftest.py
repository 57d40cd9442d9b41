"""Shared fixtures: in-memory and SQLite stores, recording changelogs."""

from __future__ import annotations

import sys
import textwrap
import uuid

import pytest
import pytest_asyncio

from kvmigrate.migrations.changeset import ChangeSet, ChangeSetDescriptor, MigrationUnit, StaticChangeLogSource
from kvmigrate.migrations.config import MigrationConfig
from kvmigrate.migrations.store import MemoryKeyValueStore, SQLiteKeyValueStore


@pytest.fixture(scope="session", autouse=True)
def _silence_aiosqlite_logging():
    """Reduce noisy aiosqlite logs during tests."""
    import logging

    for name in ("aiosqlite", "aiosqlite.core"):
        logger = logging.getLogger(name)
        logger.setLevel(logging.ERROR)
        logger.propagate = False


@pytest.fixture
def memory_store():
    return MemoryKeyValueStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path):
    store = await SQLiteKeyValueStore.open(str(tmp_path / "changelog.sqlite3"), "kvmigrate_changelog")
    await store.ensure_table()
    try:
        yield store
    finally:
        await store.close()


@pytest.fixture
def make_config():
    def _factory(**kwargs) -> MigrationConfig:
        kwargs.setdefault("scan_target", "tests.changelogs")
        return MigrationConfig(**kwargs)

    return _factory


class Recorder:
    """Collects the ids of changesets in the order they ran."""

    def __init__(self):
        self.calls: list[str] = []

    def op(self, change_id: str, fail: bool = False):
        def _run():
            self.calls.append(change_id)
            if fail:
                raise RuntimeError(f"{change_id} exploded")

        return _run


@pytest.fixture
def recorder():
    return Recorder()


def make_changeset(
    change_id: str,
    handle,
    order: str = "001",
    author: str = "tester",
    run_always: bool = False,
    unit: str = "tests.Unit",
) -> ChangeSet:
    return ChangeSet(
        descriptor=ChangeSetDescriptor(
            id=change_id,
            author=author,
            order=order,
            run_always=run_always,
            changelog_class=unit,
            method_name=change_id.replace("-", "_"),
        ),
        handle=handle,
    )


def make_source(*units: tuple[str, list[ChangeSet]]) -> StaticChangeLogSource:
    return StaticChangeLogSource(
        MigrationUnit(name=name, resolver=lambda changesets=changesets: changesets) for name, changesets in units
    )


@pytest.fixture
def changeset_factory():
    return make_changeset


@pytest.fixture
def source_factory():
    return make_source


@pytest.fixture
def changelog_package(tmp_path, monkeypatch):
    """Write a throwaway package of changelog modules and make it importable.

    Returns a factory taking a mapping of module name to source and
    returning the package name.
    """
    created: list[str] = []

    def _factory(modules: dict[str, str]) -> str:
        package = f"changelogs_{uuid.uuid4().hex[:8]}"
        package_dir = tmp_path / package
        package_dir.mkdir()
        (package_dir / "__init__.py").write_text("")
        for name, source in modules.items():
            (package_dir / f"{name}.py").write_text(textwrap.dedent(source))
        monkeypatch.syspath_prepend(str(tmp_path))
        created.append(package)
        return package

    yield _factory

    for name in list(sys.modules):
        if any(name == p or name.startswith(p + ".") for p in created):
            del sys.modules[name]
