"""
Persistent key-value storage boundary.

Both caches of the session layer (public keys and decryption signatures) go
through GenericStringStorage, so disk, browser-like or in-memory backings are
interchangeable. Records are self-describing; concurrent writers follow
last-write-wins.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union


class GenericStringStorage(ABC):
    """Abstract string-to-string store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryStorage(GenericStringStorage):
    """Dictionary-backed storage, scoped to the process. Useful for tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())

    def __len__(self):
        return len(self._data)


class JsonFileStorage(GenericStringStorage):
    """
    Storage backed by a single JSON object on disk.

    The file is re-read on every access so several processes sharing it see
    each other's writes. Writes replace the file atomically.
    """

    def __init__(self, filepath: Union[str, Path]):
        self.path = Path(filepath)
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Ignoring unreadable storage file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            self.logger.warning(f"Ignoring storage file {self.path}: top-level value is not an object")
            return {}
        return data

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix=".fhevm-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)
