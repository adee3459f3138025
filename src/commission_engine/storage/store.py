"""Key-value persistence collaborators.

The engine hands a full collection snapshot to ``save`` after every
mutation; the store decides the format.
"""

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.errors import PersistenceError

logger = logging.getLogger(__name__)

RULES_KEY = "commission-rules"
COMMISSIONS_KEY = "commissions"
AUDIT_KEY = "commission-audit"


class KeyValueStore(ABC):
    """Load/save contract keyed by collection name."""

    @abstractmethod
    def load(self, key: str, default: Any = None) -> Any:
        """Return the stored collection, or default if nothing is stored."""
        pass

    @abstractmethod
    def save(self, key: str, collection: Any) -> None:
        """Replace the stored collection."""
        pass


class MemoryStore(KeyValueStore):
    """In-process store; keeps deep copies so callers can't alias stored data."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self.save_count = 0

    def load(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def save(self, key: str, collection: Any) -> None:
        self._data[key] = copy.deepcopy(collection)
        self.save_count += 1


class JsonFileStore(KeyValueStore):
    """One JSON file per collection under a data directory."""

    def __init__(self, data_path: Optional[Path] = None):
        if data_path is None:
            from ..core.config import settings
            data_path = settings.data_path
        self.data_path = Path(data_path)
        self._lock = threading.Lock()

    def _file_for(self, key: str) -> Path:
        return self.data_path / f"{key}.json"

    def load(self, key: str, default: Any = None) -> Any:
        data_file = self._file_for(key)
        if not data_file.exists():
            return default
        try:
            with open(data_file, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading {data_file}: {e}")
            raise PersistenceError(
                f"Could not read {data_file}: {e}",
                {'key': key, 'path': str(data_file)}
            ) from e

    def save(self, key: str, collection: Any) -> None:
        self.data_path.mkdir(parents=True, exist_ok=True)
        data_file = self._file_for(key)

        with self._lock:
            # Write to a sibling temp file and swap it in
            fd, tmp_path = tempfile.mkstemp(dir=self.data_path, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(collection, f, indent=2)
                os.replace(tmp_path, data_file)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
