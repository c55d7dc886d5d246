"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from db_backup.config import load_db_config, DatabaseProfile, BackupConfig
"""

from db_backup.config.loader import load_db_config, profile_from_env
from db_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile

__all__ = [
    "load_db_config",
    "profile_from_env",
    "BackupConfig",
    "BackupSettings",
    "DatabaseProfile",
]
