"""Archive writer: logical dump -> compressed, hashed, atomically named artifact.

The dump streams through gzip into ``.{name}.partial`` in the destination
directory while the compressed bytes are hashed.  Only a complete file is
renamed to its final name, so a crash never leaves a truncated artifact
under a real artifact name.

Usage:
    from db_backup.backup.writer import ArchiveWriter

    writer = ArchiveWriter(tools, MetadataStore(), profile, compression_level=6)
    artifact = writer.create("shop", Path("backups"))
    print(artifact.path, artifact.checksum)
"""

import hashlib
import logging
import os
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from db_backup.adapters.base import DumpTool
from db_backup.backup.catalog import artifact_name
from db_backup.backup.compression import GzipCodec
from db_backup.backup.metadata import MetadataStore
from db_backup.backup.models import BackupArtifact
from db_backup.config.models import DatabaseProfile
from db_backup.errors import BackupEngineError, CompressionFailed

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".partial"

# Upper bound on ``_N`` collision counters for one timestamp
MAX_NAME_ATTEMPTS = 1000


class HashingWriter:
    """File wrapper that feeds every written byte into a hash."""

    def __init__(self, fileobj: BinaryIO, algorithm: str = "sha256") -> None:
        self._fileobj = fileobj
        self._hash = hashlib.new(algorithm)
        self.bytes_written = 0

    def write(self, data) -> int:
        written = self._fileobj.write(data)
        self._hash.update(data)
        self.bytes_written += len(data)
        return written

    def flush(self) -> None:
        self._fileobj.flush()

    def hexdigest(self) -> str:
        return self._hash.hexdigest()


class ArchiveWriter:
    """Produces ``BackupArtifact``s from a live database.

    Args:
        tools: ``DumpTool`` that streams the logical dump.
        store: Sidecar store; the sidecar is written after the rename.
        profile: Connection profile recorded in the sidecar.
        compression_level: gzip level 1-9.
        dump_timeout: Seconds before the dump is killed (None: no limit).
        clock: Returns the capture start time (injectable for tests).
    """

    def __init__(
        self,
        tools: DumpTool,
        store: MetadataStore,
        profile: DatabaseProfile,
        compression_level: int = 6,
        dump_timeout: float | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._tools = tools
        self._store = store
        self._profile = profile
        self._codec = GzipCodec()
        self._compression_level = compression_level
        self._dump_timeout = dump_timeout
        self._clock = clock

    def _final_path(self, database: str, kind: str, started: datetime, directory: Path) -> Path:
        for counter in range(MAX_NAME_ATTEMPTS):
            candidate = directory / artifact_name(database, kind, started, counter)
            if not candidate.exists():
                return candidate
        raise CompressionFailed(
            f"No free artifact name for {database} at {started}", stage="compress"
        )

    def create(self, database: str, destination_dir: Path, kind: str = "backup") -> BackupArtifact:
        """Dump ``database`` into a new artifact under ``destination_dir``.

        Args:
            database: Database to dump.
            destination_dir: Created if missing.
            kind: ``backup``, ``pre_restore``, ``before_reset`` or ``pre_init``.

        Returns:
            The finalized artifact, with its checksum and sidecar written.

        Raises:
            DumpFailed: If the dump program fails or times out.
            CompressionFailed: If the compressed stream cannot be written.
            MetadataError: If the sidecar cannot be written.
        """
        started = self._clock().replace(microsecond=0)
        destination_dir = Path(destination_dir)
        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CompressionFailed(
                f"Cannot create backup directory {destination_dir}: {e}", stage="compress"
            ) from e

        final_path = self._final_path(database, kind, started, destination_dir)
        partial_path = destination_dir / f".{final_path.name}{PARTIAL_SUFFIX}"

        logger.info(f"Starting {kind} of database: {database}")
        t0 = time.monotonic()
        try:
            with open(partial_path, "wb") as raw:
                sink = HashingWriter(raw)
                # The gzip header carries the uncompressed name, like `gzip -c`
                inner_name = final_path.name.removesuffix(".gz")
                with self._codec.open_writer(sink, self._compression_level, inner_name) as stream:
                    self._tools.dump(database, stream, timeout=self._dump_timeout)
                raw.flush()
                os.fsync(raw.fileno())
            os.replace(partial_path, final_path)
        except BackupEngineError as e:
            partial_path.unlink(missing_ok=True)
            if e.artifact is None:
                e.artifact = final_path
            raise
        except OSError as e:
            partial_path.unlink(missing_ok=True)
            raise CompressionFailed(
                f"Writing compressed dump failed: {e}", stage="compress", artifact=final_path
            ) from e
        except BaseException:
            partial_path.unlink(missing_ok=True)
            raise

        artifact = BackupArtifact(
            path=final_path,
            source_database=database,
            kind=kind,
            created_at=started,
            size_bytes=final_path.stat().st_size,
            compression_algorithm=self._codec.name,
            compression_level=self._compression_level,
            checksum=sink.hexdigest(),
        )
        logger.info(
            f"Backup completed in {time.monotonic() - t0:.1f}s: "
            f"{final_path.name} ({artifact.size_bytes} bytes)"
        )

        self._store.write(artifact, self._profile)
        return artifact
