"""Tests for MigrationConfig."""

import pytest
from pydantic import ValidationError

from kvmigrate.config.environment import Environment
from kvmigrate.migrations.config import MigrationConfig
from kvmigrate.migrations.exceptions import ConfigurationError

KVMIGRATE_VARS = [
    "KVMIGRATE_TABLE_NAME",
    "KVMIGRATE_PARTITION_KEY",
    "KVMIGRATE_WAIT_FOR_LOCK",
    "KVMIGRATE_LOCK_WAIT_TIME",
    "KVMIGRATE_LOCK_POLL_RATE",
    "KVMIGRATE_THROW_IF_LOCKED",
    "KVMIGRATE_ENABLED",
    "KVMIGRATE_SCAN_TARGET",
    "KVMIGRATE_PROFILES",
]


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.setattr(Environment, "_dotenv_loaded", True)
    for var in KVMIGRATE_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


class TestMigrationConfig:
    def test_defaults(self):
        config = MigrationConfig()

        assert config.changelog_table_name == "kvmigrate_changelog"
        assert config.partition_key_name == "pk"
        assert config.wait_for_lock is False
        assert config.lock_wait_time == 5.0
        assert config.lock_poll_rate == 10.0
        assert config.throw_exception_if_cannot_obtain_lock is False
        assert config.enabled is True
        assert config.scan_target is None
        assert config.environment_filter is None

    def test_is_frozen(self):
        config = MigrationConfig()
        with pytest.raises(ValidationError):
            config.enabled = False

    @pytest.mark.parametrize("field", ["changelog_table_name", "partition_key_name"])
    def test_blank_names_rejected(self, field):
        with pytest.raises(ValidationError):
            MigrationConfig(**{field: "  "})

    def test_negative_wait_time_rejected(self):
        with pytest.raises(ValidationError):
            MigrationConfig(lock_wait_time=-1)

    def test_zero_poll_rate_rejected(self):
        with pytest.raises(ValidationError):
            MigrationConfig(lock_poll_rate=0)

    @pytest.mark.parametrize("scan_target", [None, "", "   "])
    def test_validate_for_run_requires_scan_target(self, scan_target):
        with pytest.raises(ConfigurationError):
            MigrationConfig(scan_target=scan_target).validate_for_run()

    def test_validate_for_run_ok(self):
        MigrationConfig(scan_target="app.changelogs").validate_for_run()


class TestFromEnvironment:
    def test_defaults_without_env(self, clean_env):
        config = MigrationConfig.from_environment()

        assert config == MigrationConfig()

    def test_reads_env(self, clean_env):
        clean_env.setenv("KVMIGRATE_TABLE_NAME", "app_changelog")
        clean_env.setenv("KVMIGRATE_PARTITION_KEY", "changeKey")
        clean_env.setenv("KVMIGRATE_WAIT_FOR_LOCK", "true")
        clean_env.setenv("KVMIGRATE_LOCK_WAIT_TIME", "2")
        clean_env.setenv("KVMIGRATE_LOCK_POLL_RATE", "0.5")
        clean_env.setenv("KVMIGRATE_THROW_IF_LOCKED", "yes")
        clean_env.setenv("KVMIGRATE_ENABLED", "0")
        clean_env.setenv("KVMIGRATE_SCAN_TARGET", "app.changelogs")
        clean_env.setenv("KVMIGRATE_PROFILES", "dev, eu")

        config = MigrationConfig.from_environment()

        assert config.changelog_table_name == "app_changelog"
        assert config.partition_key_name == "changeKey"
        assert config.wait_for_lock is True
        assert config.lock_wait_time == 2.0
        assert config.lock_poll_rate == 0.5
        assert config.throw_exception_if_cannot_obtain_lock is True
        assert config.enabled is False
        assert config.scan_target == "app.changelogs"
        assert config.environment_filter == ("dev", "eu")

    def test_overrides_win_unless_none(self, clean_env):
        clean_env.setenv("KVMIGRATE_SCAN_TARGET", "app.changelogs")
        clean_env.setenv("KVMIGRATE_TABLE_NAME", "from_env")

        config = MigrationConfig.from_environment(scan_target="other.changelogs", changelog_table_name=None)

        assert config.scan_target == "other.changelogs"
        assert config.changelog_table_name == "from_env"

    def test_invalid_boolean(self, clean_env):
        clean_env.setenv("KVMIGRATE_WAIT_FOR_LOCK", "maybe")
        with pytest.raises(ConfigurationError, match="KVMIGRATE_WAIT_FOR_LOCK"):
            MigrationConfig.from_environment()

    def test_invalid_number(self, clean_env):
        clean_env.setenv("KVMIGRATE_LOCK_POLL_RATE", "fast")
        with pytest.raises(ConfigurationError, match="KVMIGRATE_LOCK_POLL_RATE"):
            MigrationConfig.from_environment()

    def test_out_of_range_value(self, clean_env):
        clean_env.setenv("KVMIGRATE_LOCK_WAIT_TIME", "-1")
        with pytest.raises(ConfigurationError, match="lock_wait_time"):
            MigrationConfig.from_environment()

    def test_blank_override(self, clean_env):
        with pytest.raises(ConfigurationError) as exc_info:
            MigrationConfig.from_environment(changelog_table_name="   ")
        assert isinstance(exc_info.value.__cause__, ValidationError)
