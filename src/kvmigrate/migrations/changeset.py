"""
Changeset model: descriptors, bound handles and migration units.

A migration unit ("changelog") is a class decorated with `@changelog`; its
changesets are methods decorated with `@changeset`:

    @changelog(order="001")
    class UserMigrations:
        @changeset(id="add-index", author="alice", order="001")
        def add_index(self, client):
            ...

        @changeset(id="refresh-cache", author="alice", order="002", run_always=True)
        async def refresh_cache(self):
            ...

Changesets run in ascending string order of `order`. The comparison is
lexicographic, so "10" sorts before "2": zero-pad order keys ("001", "002")
to get numeric ordering.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Protocol, Sequence

CHANGELOG_ATTR = "__kvmigrate_changelog__"
CHANGESET_ATTR = "__kvmigrate_changeset__"


@dataclass(frozen=True)
class ChangeLogMeta:
    order: str = ""
    profiles: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChangeSetMeta:
    id: str
    author: str
    order: str
    run_always: bool = False
    profiles: tuple[str, ...] = ()


@dataclass(frozen=True)
class ChangeSetDescriptor:
    """Static metadata of one changeset.

    Attributes:
        id: Changeset id, unique together with author
        author: Logical owner
        order: Ordering key within the unit, compared as a string
        run_always: Execute on every run, recorded at most once
        changelog_class: Identifier of the owning unit
        method_name: Identifier of the changeset within the unit
    """

    id: str
    author: str
    order: str
    run_always: bool = False
    changelog_class: str = ""
    method_name: str = ""


@dataclass(frozen=True)
class ChangeSet:
    """A descriptor plus the callable that performs the change."""

    descriptor: ChangeSetDescriptor
    handle: Callable[..., Any]


@dataclass
class MigrationUnit:
    """A named, ordered collection of changesets.

    `resolver` is called when the run reaches the unit; it may instantiate
    classes and can therefore fail, which aborts the run.
    """

    name: str
    resolver: Callable[[], Sequence[ChangeSet]] = field(repr=False)

    def resolve(self) -> list[ChangeSet]:
        return list(self.resolver())


class ChangeLogSource(Protocol):
    """Anything that yields migration units in execution order."""

    def fetch_units(self) -> list[MigrationUnit]: ...


class StaticChangeLogSource:
    """A source over an already-resolved list of units."""

    def __init__(self, units: Iterable[MigrationUnit]):
        self._units = list(units)

    def fetch_units(self) -> list[MigrationUnit]:
        return list(self._units)


def sort_changesets(changesets: Iterable[ChangeSet]) -> list[ChangeSet]:
    """Sort by `order`, lexicographically. Ties keep their input order."""
    return sorted(changesets, key=lambda c: c.descriptor.order)


def changelog(order: str = "", profiles: Iterable[str] = ()):
    """Mark a class as a migration unit.

    Args:
        order: Position among units; units without one sort by name
        profiles: Environment profiles the unit is limited to
    """

    def decorator(cls):
        setattr(cls, CHANGELOG_ATTR, ChangeLogMeta(order=order, profiles=tuple(profiles)))
        return cls

    return decorator


def changeset(id: str, author: str, order: str, run_always: bool = False, profiles: Iterable[str] = ()):
    """Mark a method as a changeset of its migration unit.

    Args:
        id: Changeset id, unique together with author
        author: Logical owner
        order: Position within the unit (string comparison)
        run_always: Execute on every run
        profiles: Environment profiles the changeset is limited to
    """

    def decorator(func):
        setattr(
            func,
            CHANGESET_ATTR,
            ChangeSetMeta(id=id, author=author, order=order, run_always=run_always, profiles=tuple(profiles)),
        )
        return func

    return decorator
