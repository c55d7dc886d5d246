"""Connection probe gating every database-touching command."""

import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from db_backup.adapters.base import DatabaseServer
from db_backup.backup.models import ProbeResult
from db_backup.errors import DatabaseConnectionError

logger = logging.getLogger(__name__)


class ConnectionProbe:
    """One ``SELECT 1`` round trip, no retry.

    The connect timeout is a property of the server adapter (see
    ``MySQLServer(connect_timeout=...)``).
    """

    def __init__(self, server: DatabaseServer, target: str = "") -> None:
        self._server = server
        self._target = target

    def probe(self) -> ProbeResult:
        start = time.monotonic()
        try:
            if not self._server.ping():
                return ProbeResult(reachable=False, reason="SELECT 1 returned an unexpected value")
            version = self._server.server_version()
        except (SQLAlchemyError, OSError) as e:
            reason = str(getattr(e, "orig", None) or e)
            logger.debug(f"Probe of {self._target or 'server'} failed: {reason}")
            return ProbeResult(reachable=False, reason=reason)
        latency = (time.monotonic() - start) * 1000
        return ProbeResult(reachable=True, server_version=version, latency_ms=round(latency, 1))

    def require(self) -> ProbeResult:
        """Probe and raise when unreachable.

        Raises:
            DatabaseConnectionError: If the server cannot be reached.
        """
        logger.info("Testing database connection...")
        result = self.probe()
        if not result.reachable:
            raise DatabaseConnectionError(
                f"Cannot connect to MySQL{f' at {self._target}' if self._target else ''}: {result.reason}",
                stage="probe",
                recovery_hint="Check that the server is running and the profile credentials are correct.",
            )
        logger.info(f"Connected to MySQL {result.server_version}")
        return result
