"""Metadata sidecar files.

Each artifact ``X.sql.gz`` has a ``X.sql.gz.meta`` text file of
``KEY=value`` lines, compatible with shell ``source``.  Keys are written in
a fixed order; unknown keys are ignored on read.

Usage:
    from db_backup.backup.metadata import MetadataStore

    store = MetadataStore()
    store.write(artifact, profile)
    meta = store.read(artifact.path)
    print(meta.checksum)
"""

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from db_backup.backup.models import METADATA_SUFFIX, METADATA_VERSION, BackupArtifact, BackupMetadata
from db_backup.config.models import DatabaseProfile
from db_backup.errors import MetadataError, MetadataNotFoundError

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Sidecar key -> BackupMetadata field, in write order
SIDECAR_KEYS = {
    "BACKUP_METADATA_VERSION": "schema_version",
    "BACKUP_DATE": "backup_date",
    "BACKUP_FILE": "backup_file",
    "DATABASE_NAME": "source_database",
    "DATABASE_HOST": "host",
    "DATABASE_PORT": "port",
    "DATABASE_USER": "user",
    "BACKUP_SIZE": "size_bytes",
    "CHECKSUM": "checksum",
    "COMPRESSION": "compression",
    "COMPRESSION_LEVEL": "compression_level",
    "ENCRYPTED": "encrypted",
}


def sidecar_path(artifact_path: Path) -> Path:
    """``backups/x.sql.gz`` -> ``backups/x.sql.gz.meta``."""
    artifact_path = Path(artifact_path)
    return artifact_path.with_name(artifact_path.name + METADATA_SUFFIX)


def _format_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.strftime(DATE_FORMAT)
    return str(value)


def render(metadata: BackupMetadata) -> str:
    """Serialize metadata to sidecar text."""
    lines = []
    for key, field in SIDECAR_KEYS.items():
        lines.append(f"{key}={_format_value(getattr(metadata, field))}")
    return "\n".join(lines) + "\n"


def parse(text: str) -> dict[str, str]:
    """Parse sidecar text into a ``{KEY: value}`` dict.

    Blank lines and ``#`` comments are skipped; surrounding quotes are
    stripped so hand-edited files still parse.

    Raises:
        MetadataError: On a line without ``=``.
    """
    values = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            raise MetadataError(f"Malformed metadata line {lineno}: {raw!r}")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


class MetadataStore:
    """Reads and writes artifact sidecars."""

    def sidecar_path(self, artifact_path: Path) -> Path:
        return sidecar_path(artifact_path)

    def write(
        self,
        artifact: BackupArtifact,
        profile: DatabaseProfile,
        backup_date: datetime | None = None,
    ) -> BackupMetadata:
        """Write the sidecar for ``artifact`` atomically.

        The file is written to a temp name in the same directory and
        renamed, so a reader never sees a half-written sidecar.

        Args:
            artifact: Finalized artifact (its checksum must be set).
            profile: Connection profile the dump was taken with.
            backup_date: Capture time; defaults to ``artifact.created_at``.

        Returns:
            The metadata that was written.

        Raises:
            MetadataError: If the artifact has no checksum or writing fails.
        """
        if not artifact.checksum:
            raise MetadataError(
                "Cannot write metadata without a checksum", stage="metadata", artifact=artifact.path
            )

        metadata = BackupMetadata(
            schema_version=METADATA_VERSION,
            backup_date=backup_date or artifact.created_at,
            backup_file=artifact.name,
            source_database=artifact.source_database,
            host=profile.host,
            port=profile.port,
            user=profile.user,
            size_bytes=artifact.size_bytes,
            checksum=artifact.checksum,
            compression=artifact.compression_algorithm,
            compression_level=artifact.compression_level,
            encrypted=False,
        )

        target = self.sidecar_path(artifact.path)
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(render(metadata))
            os.replace(tmp, target)
        except OSError as e:
            Path(tmp).unlink(missing_ok=True)
            raise MetadataError(
                f"Writing metadata failed: {e}", stage="metadata", artifact=artifact.path
            ) from e

        logger.info(f"Metadata created: {target.name}")
        return metadata

    def read(self, artifact_path: Path) -> BackupMetadata:
        """Load the sidecar of ``artifact_path``.

        Raises:
            MetadataNotFoundError: If there is no sidecar.
            MetadataError: If the sidecar cannot be read or parsed.
        """
        path = self.sidecar_path(artifact_path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise MetadataNotFoundError(
                f"Metadata file not found: {path.name}", artifact=artifact_path
            ) from e
        except (OSError, UnicodeDecodeError) as e:
            raise MetadataError(f"Cannot read {path.name}: {e}", artifact=artifact_path) from e

        values = parse(text)
        data = {}
        for key, field in SIDECAR_KEYS.items():
            if key in values and values[key] != "":
                data[field] = values[key]
        if "backup_date" in data:
            try:
                data["backup_date"] = datetime.strptime(data["backup_date"], DATE_FORMAT)
            except ValueError as e:
                raise MetadataError(
                    f"Invalid BACKUP_DATE in {path.name}: {e}", artifact=artifact_path
                ) from e

        try:
            return BackupMetadata(**data)
        except ValidationError as e:
            raise MetadataError(f"Invalid metadata in {path.name}: {e}", artifact=artifact_path) from e

    def delete(self, artifact_path: Path) -> bool:
        """Remove the sidecar. Returns False when there was none."""
        path = self.sidecar_path(artifact_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
