"""Database adapters package.

Provides the ``DatabaseServer`` and ``DumpTool`` Protocols and their MySQL
implementations.

Usage:
    from db_backup.adapters import DatabaseServer, DumpTool
    from db_backup.adapters import MySQLServer, MySQLClientTools
"""

from db_backup.adapters.base import DatabaseServer, DumpTool
from db_backup.adapters.mysql import MySQLServer
from db_backup.adapters.mysql_tools import MySQLClientTools

__all__ = [
    "DatabaseServer",
    "DumpTool",
    "MySQLServer",
    "MySQLClientTools",
]
