"""
PostgreSQL snapshot store for the pipeliner queue.
"""

from typing import Any, Dict, Optional

from psycopg.types.json import Jsonb

from .snapshot_store import SnapshotStore
from ..helper.database import Database
from ..helper.error import PipelineError
from ..helper.logging import get_logger
from ..helper.sql import run_ddl

logger = get_logger(__name__)

TABLE_NAME = "pipeline_snapshot"


class SnapshotDBHandler(SnapshotStore):
    """
    Stores queue snapshots in one JSONB row per persistence key.
    """

    def __init__(self, db_connection: Database, with_table_drop: bool = False):
        """
        Initialize the snapshot handler.

        :param db_connection: Connected database wrapper.
        :param with_table_drop: Drop the table before creating it.
        :raises PipelineError: If the connection is missing.
        """
        if db_connection is None or not db_connection.connected:
            raise PipelineError("database connection is required")

        self.db = db_connection

        if with_table_drop:
            self.drop_table()

        self.create_table()

    def table_exists(self) -> bool:
        return self.db.table_exists(TABLE_NAME)

    def create_table(self) -> None:
        """Create the snapshot table if it does not exist."""
        run_ddl(
            self.db.instance,
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                key TEXT PRIMARY KEY,
                snapshot JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """,
        )
        logger.debug("Checked snapshot table", table=TABLE_NAME)

    def drop_table(self) -> None:
        run_ddl(self.db.instance, f"DROP TABLE IF EXISTS {TABLE_NAME};")
        logger.debug("Dropped snapshot table", table=TABLE_NAME)

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self.db.transaction(f"load snapshot {key}") as cur:
            cur.execute(f"SELECT snapshot FROM {TABLE_NAME} WHERE key = %s;", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        with self.db.transaction(f"save snapshot {key}") as cur:
            cur.execute(
                f"""
                INSERT INTO {TABLE_NAME} (key, snapshot, updated_at)
                VALUES (%s, %s, NOW())
                ON CONFLICT (key)
                DO UPDATE SET snapshot = EXCLUDED.snapshot, updated_at = NOW();
                """,
                (key, Jsonb(snapshot)),
            )

    def delete(self, key: str) -> None:
        with self.db.transaction(f"delete snapshot {key}") as cur:
            cur.execute(f"DELETE FROM {TABLE_NAME} WHERE key = %s;", (key,))
