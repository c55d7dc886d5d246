"""Profile resolution and adapter construction.

Supports two configuration modes:
1. Profile mode (db.toml): named profiles plus a ``[backup]`` table
2. Environment mode (no db.toml): a single profile from ``DB_HOST``,
   ``DB_PORT``, ``DB_USER``, ``DB_PASSWORD`` and ``DB_NAME``

Usage:
    from db_backup.factory import build_manager

    manager = build_manager(profile_name="local")
    report = manager.check()
"""

import logging
import os
from pathlib import Path

from db_backup.adapters.mysql import MySQLServer
from db_backup.adapters.mysql_tools import MySQLClientTools
from db_backup.backup.manager import BackupManager
from db_backup.config.loader import load_db_config, profile_from_env, resolve_config_path
from db_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile

logger = logging.getLogger(__name__)

ENV_PROFILE_NAME = "env"


# ============================================================================
# Profile Resolution
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def load_config(config_path: Path | None = None, env_prefix: str = "") -> BackupConfig:
    """Load db.toml, or fall back to a single profile from the environment.

    Raises:
        ConfigurationError: If the file or the environment holds invalid values.
    """
    path = resolve_config_path(config_path, env_prefix)
    if config_path is None and not path.exists():
        logger.debug(f"{path} not found; using {env_prefix}DB_* environment variables")
        return BackupConfig(
            profiles={ENV_PROFILE_NAME: profile_from_env(env_prefix)},
            backup=BackupSettings(),
        )
    return load_db_config(path, env_prefix)


def get_active_profile_name(
    config: BackupConfig, profile_name: str | None = None, env_prefix: str = ""
) -> str:
    """Get the active profile name.

    Priority:
    1. ``profile_name`` argument (``--profile``)
    2. ``{env_prefix}DB_PROFILE`` env var
    3. The only profile in the config
    4. Raise ProfileNotFoundError

    Raises:
        ProfileNotFoundError: If no profile is selected or the name is unknown.
    """
    name = profile_name or os.environ.get(f"{env_prefix}DB_PROFILE")
    available = ", ".join(config.profiles) or "(none)"

    if name is None:
        if len(config.profiles) == 1:
            return next(iter(config.profiles))
        raise ProfileNotFoundError(
            "No database profile selected.\n"
            f"Pass --profile <name> or set {env_prefix}DB_PROFILE.\n"
            f"Available profiles: {available}"
        )

    if name not in config.profiles:
        raise ProfileNotFoundError(
            f"Profile '{name}' not found in db.toml.\nAvailable profiles: {available}"
        )
    return name


def get_active_profile(
    config: BackupConfig, profile_name: str | None = None, env_prefix: str = ""
) -> tuple[str, DatabaseProfile]:
    """Get active profile name and configuration.

    Returns:
        Tuple of (profile_name, DatabaseProfile)
    """
    name = get_active_profile_name(config, profile_name, env_prefix)
    return name, config.profiles[name]


# ============================================================================
# Adapter Factory
# ============================================================================


def create_server(profile: DatabaseProfile, settings: BackupSettings) -> MySQLServer:
    """MySQL server adapter with the configured probe timeout."""
    return MySQLServer(profile.server_url(), connect_timeout=settings.probe_timeout)


def create_tools(profile: DatabaseProfile, settings: BackupSettings) -> MySQLClientTools:
    return MySQLClientTools(
        profile,
        mysqldump_path=settings.mysqldump_path,
        mysql_path=settings.mysql_path,
    )


def build_manager(
    profile_name: str | None = None,
    config_path: Path | None = None,
    env_prefix: str = "",
    backup_dir: Path | None = None,
    config: BackupConfig | None = None,
) -> BackupManager:
    """Build a ``BackupManager`` for the active profile.

    Args:
        profile_name: Explicit profile (else env var / single profile).
        config_path: db.toml location.
        env_prefix: Prefix for environment variable lookup.
        backup_dir: Overrides ``[backup].directory``.
        config: Already-loaded configuration (skips loading).

    Raises:
        ProfileNotFoundError: If no profile can be resolved.
        ConfigurationError: If the configuration is invalid.
        FileNotFoundError: If an explicit ``config_path`` does not exist.

    Example:
        >>> manager = build_manager("local", backup_dir=Path("/var/backups/shop"))
        >>> manager.create()
    """
    if config is None:
        config = load_config(config_path, env_prefix)
    name, profile = get_active_profile(config, profile_name, env_prefix)
    settings = config.backup
    logger.debug(f"Using profile '{name}': {profile.describe()}")

    tools = create_tools(profile, settings)
    return BackupManager(
        name,
        profile,
        settings,
        server=create_server(profile, settings),
        tools=tools,
        backup_dir=backup_dir,
        missing_programs=tools.missing_programs(),
    )
