"""Database server and dump tool protocol definitions.

Defines the two narrow interfaces the backup engine talks to:

- ``DatabaseServer``: server-level SQL (health check, DROP/CREATE DATABASE,
  table counts).
- ``DumpTool``: the engine's logical dump and load facilities, as byte
  streams.

Anything implementing these can stand in for a live engine, which is how
the test suite drives the restore state machine.

Usage:
    from db_backup.adapters.base import DatabaseServer, DumpTool

    def snapshot(server: DatabaseServer, tools: DumpTool, out) -> None:
        if server.database_exists("shop"):
            tools.dump("shop", out)
"""

from typing import BinaryIO, Protocol


class DatabaseServer(Protocol):
    """Server-level operations that all engine adapters must implement.

    All database names passed in have already been validated as plain
    identifiers (letters, digits, underscore).
    """

    def ping(self) -> bool:
        """Run a trivial round-trip query.

        Returns:
            ``True`` if the server answered.

        Raises:
            Exception: If the server cannot be reached within the connect
                timeout.
        """
        ...

    def server_version(self) -> str:
        """Return the server version string (e.g. ``"8.0.36"``)."""
        ...

    def database_exists(self, database: str) -> bool:
        """Return ``True`` if ``database`` exists on the server."""
        ...

    def drop_database(self, database: str) -> None:
        """Drop ``database`` if it exists.

        Example:
            server.drop_database("shop")
        """
        ...

    def create_database(self, database: str, charset: str, collation: str) -> None:
        """Create ``database`` with the given character set and collation.

        Example:
            server.create_database("shop", "utf8mb4", "utf8mb4_unicode_ci")
        """
        ...

    def table_count(self, database: str) -> int:
        """Return the number of tables in ``database`` (0 if absent)."""
        ...

    def database_size_mb(self, database: str) -> float:
        """Return data + index size of ``database`` in megabytes."""
        ...

    def close(self) -> None:
        """Release pooled connections."""
        ...


class DumpTool(Protocol):
    """Logical dump/load facility of the database engine.

    Both operations block until the underlying process exits.  Exit status
    and stderr are the only completion signals.
    """

    def dump(self, database: str, output: BinaryIO, timeout: float | None = None) -> None:
        """Write a self-describing logical dump of ``database`` to ``output``.

        The dump must include a ``CREATE DATABASE`` preamble, stored
        routines, triggers and scheduled events, taken in one consistent
        transaction.

        Raises:
            DumpFailed: On non-zero exit, spawn failure or timeout.
            CompressionFailed: If writing to ``output`` fails.
        """
        ...

    def load(self, database: str, source: BinaryIO, timeout: float | None = None) -> None:
        """Execute the SQL read from ``source`` against ``database``.

        Raises:
            LoadFailed: On non-zero exit, spawn failure or timeout.
        """
        ...
