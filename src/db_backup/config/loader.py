"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile
from db_backup.errors import ConfigurationError

DEFAULT_CONFIG_NAME = "db.toml"


def resolve_config_path(config_path: Path | None = None, env_prefix: str = "") -> Path:
    """Pick the config file location.

    Priority:
    1. Explicit ``config_path``
    2. ``{env_prefix}DB_BACKUP_CONFIG`` env var
    3. ``db.toml`` in the current working directory
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(f"{env_prefix}DB_BACKUP_CONFIG")
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_NAME


def load_db_config(config_path: Path | None = None, env_prefix: str = "") -> BackupConfig:
    """Load database configuration from TOML file.

    ``{env_prefix}DB_PASSWORD`` overrides the password of every profile so
    secrets can stay out of the file.

    Args:
        config_path: Path to db.toml (default: see ``resolve_config_path``).
        env_prefix: Prefix for environment variable lookup.

    Returns:
        BackupConfig with all profiles.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ConfigurationError: If config format is invalid.
    """
    path = resolve_config_path(config_path, env_prefix)

    if not path.exists():
        raise FileNotFoundError(
            f"Database config not found: {path}\n"
            f"Create {DEFAULT_CONFIG_NAME} with a [profiles.<name>] table "
            f"or set {env_prefix}DB_HOST/{env_prefix}DB_NAME instead."
        )

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e

    password_override = os.environ.get(f"{env_prefix}DB_PASSWORD")

    try:
        profiles = {}
        for name, profile_data in data.get("profiles", {}).items():
            if password_override is not None:
                profile_data = {**profile_data, "password": password_override}
            profiles[name] = DatabaseProfile(**profile_data)

        return BackupConfig(
            profiles=profiles,
            backup=BackupSettings(**data.get("backup", {})),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e


def profile_from_env(env_prefix: str = "") -> DatabaseProfile:
    """Build a profile from ``DB_HOST``/``DB_PORT``/``DB_USER``/``DB_PASSWORD``/``DB_NAME``.

    Used when no config file exists.

    Raises:
        ConfigurationError: If the variables hold invalid values.
    """
    env = os.environ
    try:
        return DatabaseProfile(
            host=env.get(f"{env_prefix}DB_HOST", "localhost"),
            port=int(env.get(f"{env_prefix}DB_PORT", "3306")),
            user=env.get(f"{env_prefix}DB_USER", "root"),
            password=env.get(f"{env_prefix}DB_PASSWORD", ""),
            database=env.get(f"{env_prefix}DB_NAME", "logistics_platform"),
            description="from environment",
        )
    except (ValueError, ValidationError) as e:
        raise ConfigurationError(f"Invalid database environment variables: {e}") from e
