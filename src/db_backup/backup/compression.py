"""Compression codecs for dump artifacts.

``GzipCodec`` handles ``.sql.gz`` artifacts; ``PlainCodec`` reads legacy
uncompressed ``.sql`` dumps.

Usage:
    codec = codec_for_path(Path("shop_backup_20260101_120000.sql.gz"))
    problem = codec.self_test(path)
    with codec.open_reader(path) as f:
        first = f.readline()
"""

import gzip
import zlib
from pathlib import Path
from typing import BinaryIO, Protocol

from db_backup.backup.models import COMPRESSED_SUFFIX, LEGACY_SUFFIX

READ_CHUNK = 1024 * 1024


class Codec(Protocol):
    name: str
    suffix: str

    def open_writer(self, fileobj: BinaryIO, level: int, filename: str = "") -> BinaryIO: ...

    def open_reader(self, path: Path) -> BinaryIO: ...

    def self_test(self, path: Path) -> str | None: ...


class GzipCodec:
    """gzip container, compatible with ``gzip -t`` and ``gunzip``."""

    name = "gzip"
    suffix = COMPRESSED_SUFFIX

    def open_writer(self, fileobj: BinaryIO, level: int, filename: str = "") -> BinaryIO:
        return gzip.GzipFile(filename=filename, mode="wb", compresslevel=level, fileobj=fileobj)

    def open_reader(self, path: Path) -> BinaryIO:
        return gzip.open(path, "rb")

    def self_test(self, path: Path) -> str | None:
        """Decompress the whole stream, discarding output.

        Catches bad headers, CRC mismatches and truncation.

        Returns:
            ``None`` when the container is well-formed, else the problem.
        """
        try:
            with gzip.open(path, "rb") as f:
                while f.read(READ_CHUNK):
                    pass
        except (OSError, EOFError, zlib.error) as e:
            return f"gzip test failed: {e}"
        return None


class PlainCodec:
    """Uncompressed legacy dumps. There is no container to test."""

    name = "none"
    suffix = LEGACY_SUFFIX

    def open_writer(self, fileobj: BinaryIO, level: int, filename: str = "") -> BinaryIO:
        return fileobj

    def open_reader(self, path: Path) -> BinaryIO:
        return open(path, "rb")

    def self_test(self, path: Path) -> str | None:
        return None


def codec_for_path(path: Path) -> Codec:
    """Pick the codec by file extension (``.gz`` means gzip)."""
    if Path(path).name.endswith(".gz"):
        return GzipCodec()
    return PlainCodec()
