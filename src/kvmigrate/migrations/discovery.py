"""
Discovery of @changelog classes inside a Python package.

The scanner imports the configured package and all of its submodules,
collects the classes marked with `@changelog` and turns each into a
MigrationUnit. Units are instantiated lazily, when the run reaches them.
"""

import importlib
import inspect
import pkgutil
from functools import partial
from typing import Iterable, Optional

from kvmigrate.config.logging_config import get_logger
from kvmigrate.migrations.changeset import (
    CHANGELOG_ATTR,
    CHANGESET_ATTR,
    ChangeLogMeta,
    ChangeSet,
    ChangeSetDescriptor,
    ChangeSetMeta,
    MigrationUnit,
    sort_changesets,
)
from kvmigrate.migrations.exceptions import MigrationUnitError

log = get_logger(__name__)


def profiles_match(declared: Iterable[str], active: Optional[Iterable[str]]) -> bool:
    """Return True if an element limited to `declared` profiles is active.

    No declared profiles means always active. A declared "name" matches when
    it is among the active profiles; a declared "!name" matches when it is
    not.
    """
    declared = tuple(declared)
    if not declared:
        return True
    active_set = set(active or ())
    for profile in declared:
        if profile.startswith("!"):
            if profile[1:] not in active_set:
                return True
        elif profile in active_set:
            return True
    return False


def _qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class PackageChangeLogScanner:
    """Finds migration units in `scan_target` and its subpackages."""

    def __init__(self, scan_target: str, environment_filter: Optional[Iterable[str]] = None):
        self.scan_target = scan_target
        self.environment_filter = tuple(environment_filter) if environment_filter is not None else None

    def _import_modules(self) -> list:
        try:
            root = importlib.import_module(self.scan_target)
        except Exception as e:
            raise MigrationUnitError(f"Cannot import scan target {self.scan_target}: {e}") from e

        modules = [root]
        if hasattr(root, "__path__"):
            for _, module_name, _ in pkgutil.walk_packages(root.__path__, prefix=root.__name__ + "."):
                try:
                    modules.append(importlib.import_module(module_name))
                except Exception as e:
                    raise MigrationUnitError(f"Cannot import changelog module {module_name}: {e}") from e
        return modules

    def fetch_changelog_classes(self) -> list[type]:
        """Return active @changelog classes in execution order.

        Classes with an `order` come first, sorted by it; the rest follow,
        sorted by qualified name.
        """
        found: dict[str, type] = {}
        for module in self._import_modules():
            for _, cls in inspect.getmembers(module, inspect.isclass):
                # Skip classes merely imported into this module
                if cls.__module__ != module.__name__:
                    continue
                meta = cls.__dict__.get(CHANGELOG_ATTR)
                if not isinstance(meta, ChangeLogMeta):
                    continue
                if not profiles_match(meta.profiles, self.environment_filter):
                    log.debug(f"Changelog {_qualified_name(cls)} is not active for profiles {self.environment_filter}")
                    continue
                found[_qualified_name(cls)] = cls

        def sort_key(cls: type) -> tuple:
            order = getattr(cls, CHANGELOG_ATTR).order
            return (0, order, _qualified_name(cls)) if order else (1, "", _qualified_name(cls))

        return sorted(found.values(), key=sort_key)

    def fetch_units(self) -> list[MigrationUnit]:
        units = [
            MigrationUnit(name=_qualified_name(cls), resolver=partial(self.resolve_changesets, cls))
            for cls in self.fetch_changelog_classes()
        ]
        log.debug(f"Discovered {len(units)} changelog(s) in {self.scan_target}")
        return units

    def resolve_changesets(self, cls: type) -> list[ChangeSet]:
        """Instantiate `cls` and return its active changesets in order.

        Raises:
            MigrationUnitError: If the class cannot be instantiated or two
                changesets share an (id, author) pair
        """
        name = _qualified_name(cls)
        try:
            instance = cls()
        except Exception as e:
            raise MigrationUnitError(f"Cannot instantiate changelog {name}: {e}", unit_name=name) from e

        changesets = []
        seen: set[tuple[str, str]] = set()
        for attr_name, member in inspect.getmembers(cls):
            meta = getattr(member, CHANGESET_ATTR, None)
            if not isinstance(meta, ChangeSetMeta):
                continue
            if not profiles_match(meta.profiles, self.environment_filter):
                continue
            if (meta.id, meta.author) in seen:
                raise MigrationUnitError(
                    f"Duplicated changeset id found: '{meta.id}' by '{meta.author}' in {name}",
                    unit_name=name,
                )
            seen.add((meta.id, meta.author))
            descriptor = ChangeSetDescriptor(
                id=meta.id,
                author=meta.author,
                order=meta.order,
                run_always=meta.run_always,
                changelog_class=name,
                method_name=attr_name,
            )
            changesets.append(ChangeSet(descriptor=descriptor, handle=getattr(instance, attr_name)))

        return sort_changesets(changesets)
