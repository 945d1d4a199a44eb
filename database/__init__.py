"""
Database package for the pipeliner.
Provides the snapshot stores for the queue backlog.
"""

# Import from helper for core database functionality
from ..helper.database import (
    Database,
    DatabaseConfiguration,
    new_database,
    new_database_from_env,
)

from .snapshot_store import (
    FileSnapshotStore,
    MemorySnapshotStore,
    SnapshotStore,
)

from .db_snapshot import (
    SnapshotDBHandler,
)

__all__ = [
    # Core database classes (from helper)
    "Database",
    "DatabaseConfiguration",
    "new_database",
    "new_database_from_env",
    # Snapshot stores
    "SnapshotStore",
    "MemorySnapshotStore",
    "FileSnapshotStore",
    "SnapshotDBHandler",
]
