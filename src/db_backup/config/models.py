"""Pydantic models for db-backup configuration."""

import re

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.engine import URL

# Database names are interpolated into DDL, so only plain identifiers pass.
DATABASE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = Field(default="", repr=False)
    database: str = "logistics_platform"
    description: str = ""

    @field_validator("database")
    @classmethod
    def _check_database_name(cls, value: str) -> str:
        if not DATABASE_NAME_PATTERN.match(value):
            raise ValueError(f"Invalid database name: {value!r}")
        return value

    def server_url(self) -> URL:
        """SQLAlchemy URL for server-level statements (no default schema).

        The password travels inside the URL object only; it is never
        rendered into logs (``URL.__repr__`` masks it).
        """
        return URL.create(
            "mysql+pymysql",
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
        )

    def describe(self) -> str:
        """One-line connection summary without secrets."""
        return f"{self.user}@{self.host}:{self.port}/{self.database}"


class BackupSettings(BaseModel):
    """The ``[backup]`` table of db.toml."""

    directory: str = "backups"
    reset_subdirectory: str = "reset_backups"
    retention_days: int = Field(default=30, ge=0)
    compression_level: int = Field(default=6, ge=1, le=9)
    min_artifact_bytes: int = Field(default=1024, ge=0)
    probe_timeout: int = Field(default=10, gt=0)
    dump_timeout: float | None = None
    load_timeout: float | None = None
    charset: str = "utf8mb4"
    collation: str = "utf8mb4_unicode_ci"
    mysqldump_path: str = "mysqldump"
    mysql_path: str = "mysql"


class BackupConfig(BaseModel):
    """Complete configuration from db.toml."""

    profiles: dict[str, DatabaseProfile]
    backup: BackupSettings = Field(default_factory=BackupSettings)
