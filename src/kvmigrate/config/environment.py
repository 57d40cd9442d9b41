"""
Environment Configuration Management Module

Centralizes access to the process environment for kvmigrate. Values come from
(in order of precedence):

- Environment variables
- `.env` files in the working directory (`.env`, `.env.<ENV>`, `.env.<ENV>.local`)
- Default values

The Environment class only exposes class methods; there is no instance state
apart from the one-time dotenv loading flag.
"""

import os
from pathlib import Path
from typing import Any, Optional

DEFAULT_ENV = {
    "ENV": "development",
    "KVMIGRATE_BACKEND": "sqlite",
    "KVMIGRATE_DB_PATH": "~/.config/kvmigrate/kvmigrate.sqlite3",
    "KVMIGRATE_DYNAMODB_ENDPOINT": None,
    "AWS_REGION": "us-east-1",
    "KVMIGRATE_LOG_LEVEL": "INFO",
    "DEBUG": None,
}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def load_dotenv_files(base_dir: Optional[Path] = None):
    """Load environment variables from .env files based on current environment."""
    from dotenv import load_dotenv

    base_dir = base_dir or Path.cwd()
    env_name = os.environ.get("ENV", "development")

    # Later files only fill variables that are still unset
    env_files = [
        base_dir / ".env",
        base_dir / f".env.{env_name}",
        base_dir / f".env.{env_name}.local",
    ]

    for env_file in env_files:
        if env_file.exists():
            load_dotenv(env_file, override=False)


class Environment(object):
    """
    Typed accessors over environment variables with project defaults.

    The first call to any accessor loads `.env` files once; explicit
    environment variables always win over file values.
    """

    _dotenv_loaded: bool = False

    @classmethod
    def load_settings(cls):
        load_dotenv_files()
        cls._dotenv_loaded = True

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        if not cls._dotenv_loaded:
            cls.load_settings()
        if key in os.environ:
            return os.environ[key]
        if default is not None:
            return default
        return DEFAULT_ENV.get(key)

    @classmethod
    def get_bool(cls, key: str, default: bool) -> bool:
        value = cls.get(key)
        if value is None:
            return default
        normalized = str(value).strip().lower()
        if normalized in _TRUTHY:
            return True
        if normalized in _FALSY:
            return False
        raise ValueError(f"Invalid boolean value for {key}: {value!r}")

    @classmethod
    def get_float(cls, key: str, default: float) -> float:
        value = cls.get(key)
        if value is None or str(value).strip() == "":
            return default
        try:
            return float(value)
        except ValueError as e:
            raise ValueError(f"Invalid numeric value for {key}: {value!r}") from e

    @classmethod
    def get_list(cls, key: str) -> Optional[list[str]]:
        """Comma separated list, or None when the variable is unset."""
        value = cls.get(key)
        if value is None:
            return None
        return [item.strip() for item in str(value).split(",") if item.strip()]

    @classmethod
    def get_log_level(cls) -> str:
        """Return desired log level string.

        Priority:
        1) LOG_LEVEL env
        2) If DEBUG env is truthy, return "DEBUG"
        3) KVMIGRATE_LOG_LEVEL env (default "INFO")
        """
        level = os.getenv("LOG_LEVEL")
        if level:
            return str(level).upper()
        debug_env = os.getenv("DEBUG")
        if debug_env and debug_env.lower() not in _FALSY:
            return "DEBUG"
        return os.getenv("KVMIGRATE_LOG_LEVEL", "INFO").upper()

    @classmethod
    def get_backend(cls) -> str:
        return str(cls.get("KVMIGRATE_BACKEND")).lower()

    @classmethod
    def get_db_path(cls) -> str:
        return str(Path(cls.get("KVMIGRATE_DB_PATH")).expanduser())

    @classmethod
    def get_aws_region(cls) -> str:
        return cls.get("AWS_REGION")

    @classmethod
    def get_dynamodb_endpoint(cls) -> Optional[str]:
        return cls.get("KVMIGRATE_DYNAMODB_ENDPOINT")
