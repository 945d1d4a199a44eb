"""
DDL execution for the snapshot tables.
"""

import threading
import time

from psycopg import Connection, errors

from .logging import get_logger

logger = get_logger(__name__)

# Concurrent CREATE/DROP on one table deadlock in PostgreSQL.
_DDL_LOCK = threading.RLock()
_TRANSIENT = (errors.DeadlockDetected, errors.SerializationFailure)
DDL_RETRY_DELAY = 0.5


def run_ddl(conn: Connection, sql_statement: str, max_retries: int = 3) -> None:
    """
    Execute a DDL statement in its own transaction.

    Deadlocks and serialization failures are retried up to ``max_retries``
    attempts in total; any other error rolls back and propagates.
    """
    attempt = 0
    with _DDL_LOCK:
        while True:
            attempt += 1
            conn.rollback()
            try:
                with conn.cursor() as cur:
                    cur.execute(sql_statement.encode("utf-8"))
                conn.commit()
                return
            except _TRANSIENT as e:
                conn.rollback()
                if attempt >= max_retries:
                    logger.error("DDL failed", error=e, attempts=attempt)
                    raise
                logger.warning("DDL lock conflict, retrying", attempt=f"{attempt}/{max_retries}")
                time.sleep(DDL_RETRY_DELAY)
            except Exception:
                conn.rollback()
                raise
