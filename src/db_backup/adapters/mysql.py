"""MySQL server adapter.

Provides ``MySQLServer``, an implementation of the ``DatabaseServer``
protocol using a synchronous SQLAlchemy engine with the ``pymysql`` driver.

Usage:
    from db_backup.adapters.mysql import MySQLServer

    server = MySQLServer(profile.server_url(), connect_timeout=10)
    if server.database_exists("shop"):
        print(server.table_count("shop"))
    server.close()
"""

from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine

from db_backup.config.models import DATABASE_NAME_PATTERN


def create_engine_pooled(url: URL | str, connect_timeout: int = 10, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine with small-pool defaults.

    Default pool settings:

    - ``pool_size=2``: The engine runs one statement at a time.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    Args:
        url: ``mysql+pymysql://`` URL without a default schema.
        connect_timeout: Seconds before a connection attempt gives up.
        **kwargs: Additional keyword arguments forwarded to ``create_engine``.

    Returns:
        Configured ``Engine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 2,
        "max_overflow": 0,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
        "connect_args": {"connect_timeout": connect_timeout},
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_engine(url, **merged)


def quote_identifier(name: str) -> str:
    """Backtick-quote a database name after validating it.

    Raises:
        ValueError: If ``name`` is not a plain identifier.
    """
    if not DATABASE_NAME_PATTERN.match(name):
        raise ValueError(f"Invalid database name: {name!r}")
    return f"`{name}`"


class MySQLServer:
    """MySQL implementation of the ``DatabaseServer`` protocol.

    DDL statements run inside ``engine.begin()``; MySQL commits DDL
    implicitly so there is nothing to roll back on failure.

    Args:
        url: Server URL (see ``DatabaseProfile.server_url``).
        connect_timeout: Seconds before connecting gives up.
        **engine_kwargs: Forwarded to ``create_engine_pooled``.
    """

    def __init__(self, url: URL | str, connect_timeout: int = 10, **engine_kwargs: Any) -> None:
        self._engine: Engine = create_engine_pooled(
            url, connect_timeout=connect_timeout, **engine_kwargs
        )

    def _scalar(self, sql: str, params: dict | None = None) -> Any:
        with self._engine.connect() as conn:
            return conn.execute(text(sql), params or {}).scalar()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Run ``SELECT 1``."""
        return self._scalar("SELECT 1") == 1

    def server_version(self) -> str:
        """Run ``SELECT VERSION()``."""
        return str(self._scalar("SELECT VERSION()"))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def database_exists(self, database: str) -> bool:
        count = self._scalar(
            "SELECT COUNT(*) FROM information_schema.schemata WHERE schema_name = :name",
            {"name": database},
        )
        return int(count or 0) == 1

    def table_count(self, database: str) -> int:
        count = self._scalar(
            "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = :name",
            {"name": database},
        )
        return int(count or 0)

    def database_size_mb(self, database: str) -> float:
        size = self._scalar(
            "SELECT ROUND(SUM(data_length + index_length) / 1024 / 1024, 2) "
            "FROM information_schema.tables WHERE table_schema = :name",
            {"name": database},
        )
        return float(size or 0)

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def drop_database(self, database: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(text(f"DROP DATABASE IF EXISTS {quote_identifier(database)}"))

    def create_database(self, database: str, charset: str, collation: str) -> None:
        # Charset and collation come from validated config, but are
        # identifiers too, so apply the same rule.
        for value in (charset, collation):
            if not DATABASE_NAME_PATTERN.match(value):
                raise ValueError(f"Invalid charset/collation: {value!r}")
        with self._engine.begin() as conn:
            conn.execute(
                text(
                    f"CREATE DATABASE {quote_identifier(database)} "
                    f"CHARACTER SET {charset} COLLATE {collation}"
                )
            )

    def close(self) -> None:
        """Dispose of the connection pool."""
        if self._engine:
            self._engine.dispose()
