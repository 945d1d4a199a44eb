"""
Durable key-value stores for queue snapshots.
"""

import json
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..helper.error import PipelineError
from ..helper.logging import get_logger

logger = get_logger(__name__)


class SnapshotStore(ABC):
    """One JSON document per key."""

    @abstractmethod
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the snapshot stored under a key, or None."""

    @abstractmethod
    def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        """Store a snapshot, replacing any previous one."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a snapshot; missing keys are ignored."""


class MemorySnapshotStore(SnapshotStore):
    """Process-local store, snapshots are copied through JSON."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        raw = json.dumps(snapshot, default=str)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileSnapshotStore(SnapshotStore):
    """
    Stores each snapshot as ``<directory>/<key>.json``.

    Writes go to a temporary file that replaces the target atomically.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe_key = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe_key}.json"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PipelineError(f"Failed to read snapshot {path}", e)

    def save(self, key: str, snapshot: Dict[str, Any]) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, default=str)
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PipelineError(f"Failed to write snapshot {path}", e)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
