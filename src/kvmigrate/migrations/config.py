"""
Run configuration for the migration engine.

A single immutable value object replaces per-option setters: it is built
once, validated on construction and handed to the orchestrator.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kvmigrate.config.environment import Environment
from kvmigrate.migrations.exceptions import ConfigurationError

DEFAULT_CHANGELOG_TABLE_NAME = "kvmigrate_changelog"
DEFAULT_PARTITION_KEY_NAME = "pk"
DEFAULT_WAIT_FOR_LOCK = False
DEFAULT_LOCK_WAIT_TIME = 5.0
DEFAULT_LOCK_POLL_RATE = 10.0
DEFAULT_THROW_EXCEPTION_IF_CANNOT_OBTAIN_LOCK = False


class MigrationConfig(BaseModel):
    """Settings for one migration engine instance."""

    model_config = ConfigDict(frozen=True)

    changelog_table_name: str = Field(
        DEFAULT_CHANGELOG_TABLE_NAME,
        description="Table holding ledger and lock records. Renaming it on a live system re-runs every changeset.",
    )
    partition_key_name: str = Field(DEFAULT_PARTITION_KEY_NAME, description="Name of the table's key attribute")
    wait_for_lock: bool = Field(DEFAULT_WAIT_FOR_LOCK, description="Poll for the lock while another process holds it")
    lock_wait_time: float = Field(DEFAULT_LOCK_WAIT_TIME, ge=0, description="Minutes to wait for the lock")
    lock_poll_rate: float = Field(DEFAULT_LOCK_POLL_RATE, gt=0, description="Seconds between lock attempts")
    throw_exception_if_cannot_obtain_lock: bool = Field(
        DEFAULT_THROW_EXCEPTION_IF_CANNOT_OBTAIN_LOCK,
        description="Raise LockUnavailableError instead of skipping the run",
    )
    enabled: bool = Field(True, description="When False, execute() does nothing")
    scan_target: Optional[str] = Field(None, description="Package holding @changelog classes")
    environment_filter: Optional[tuple[str, ...]] = Field(
        None, description="Active profiles used to include or exclude changelogs and changesets"
    )

    @field_validator("changelog_table_name", "partition_key_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    def validate_for_run(self) -> None:
        """Fail fast on settings a run cannot do without.

        Raises:
            ConfigurationError: If the scan target is unset or blank.
        """
        if self.scan_target is None or not self.scan_target.strip():
            raise ConfigurationError("Scan package for changelogs is not set: configure scan_target")

    @classmethod
    def from_environment(cls, **overrides) -> "MigrationConfig":
        """Build a config from KVMIGRATE_* environment variables.

        Keyword arguments that are not None take precedence over the
        environment.

        Raises:
            ConfigurationError: If a variable or override is invalid.
        """
        try:
            values = cls._environment_values()
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid migration settings: {e}") from e

    @staticmethod
    def _environment_values() -> dict:
        profiles = Environment.get_list("KVMIGRATE_PROFILES")
        return {
            "changelog_table_name": Environment.get("KVMIGRATE_TABLE_NAME", DEFAULT_CHANGELOG_TABLE_NAME),
            "partition_key_name": Environment.get("KVMIGRATE_PARTITION_KEY", DEFAULT_PARTITION_KEY_NAME),
            "wait_for_lock": Environment.get_bool("KVMIGRATE_WAIT_FOR_LOCK", DEFAULT_WAIT_FOR_LOCK),
            "lock_wait_time": Environment.get_float("KVMIGRATE_LOCK_WAIT_TIME", DEFAULT_LOCK_WAIT_TIME),
            "lock_poll_rate": Environment.get_float("KVMIGRATE_LOCK_POLL_RATE", DEFAULT_LOCK_POLL_RATE),
            "throw_exception_if_cannot_obtain_lock": Environment.get_bool(
                "KVMIGRATE_THROW_IF_LOCKED", DEFAULT_THROW_EXCEPTION_IF_CANNOT_OBTAIN_LOCK
            ),
            "enabled": Environment.get_bool("KVMIGRATE_ENABLED", True),
            "scan_target": Environment.get("KVMIGRATE_SCAN_TARGET"),
            "environment_filter": tuple(profiles) if profiles is not None else None,
        }
