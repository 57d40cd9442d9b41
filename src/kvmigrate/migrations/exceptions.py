"""
Exception classes for the migration engine.

Configuration and connection errors abort a run and reach the caller
unchanged. Changeset errors are caught per changeset and logged. A migration
unit error aborts the remaining run after the process lock is released.
"""


class MigrationError(Exception):
    """Base exception for migration-related errors."""

    def __init__(self, message: str, change_id: str | None = None):
        self.change_id = change_id
        super().__init__(message)


class ConfigurationError(MigrationError):
    """Raised when required settings are missing or invalid."""

    pass


class MigrationConnectionError(MigrationError):
    """Raised when the backing store cannot be reached."""

    pass


class LockUnavailableError(MigrationError):
    """Raised when the process lock is held elsewhere and strict mode is on."""

    def __init__(self, message: str, owner: str | None = None):
        self.owner = owner
        super().__init__(message)


class ChangeSetError(MigrationError):
    """Base for failures isolated to a single changeset."""

    pass


class ChangeSetSignatureError(ChangeSetError):
    """Raised when a changeset handle cannot be invoked by the engine."""

    pass


class ChangeSetExecutionError(ChangeSetError):
    """Raised when a changeset operation itself fails."""

    pass


class MigrationUnitError(MigrationError):
    """Raised when a migration unit cannot be instantiated or resolved."""

    def __init__(self, message: str, unit_name: str | None = None):
        self.unit_name = unit_name
        super().__init__(message)
