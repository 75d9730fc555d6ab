"""
Mock Data Providers - Storage for synthetic business records

Keys are slash-separated paths, ``{system}/{module}/{collection}/{record}``.
Every call may fail with ProviderFailure; callers must not assume ordering
beyond read-after-write on one key.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sapmock.errors import ProviderFailure
from sapmock.utils.routing import split_path

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def _matches(record: Record, where: Optional[Dict[str, Any]]) -> bool:
    if not where:
        return True
    return all(record.get(k) == v for k, v in where.items())


class MockDataProvider(ABC):
    """Read/write contract the handlers depend on"""

    @abstractmethod
    def read(self, key: str) -> Optional[Record]:
        """Return the record or None when it does not exist"""

    @abstractmethod
    def write(self, key: str, record: Record) -> bool:
        """Store the record; True on success"""

    @abstractmethod
    def list(self, prefix: str = "", where: Optional[Dict[str, Any]] = None) -> List[Record]:
        """Records whose key starts with `prefix` and whose fields equal `where`"""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove the record; False when it did not exist"""


class InMemoryMockDataProvider(MockDataProvider):
    """Dict-backed provider, mostly for tests and ephemeral runs"""

    def __init__(self, seed: Optional[Dict[str, Record]] = None):
        self._records: Dict[str, Record] = {k: dict(v) for k, v in (seed or {}).items()}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[Record]:
        with self._lock:
            record = self._records.get(key)
            return dict(record) if record is not None else None

    def write(self, key: str, record: Record) -> bool:
        with self._lock:
            self._records[key] = dict(record)
        return True

    def list(self, prefix: str = "", where: Optional[Dict[str, Any]] = None) -> List[Record]:
        with self._lock:
            items = sorted(self._records.items())
        return [dict(r) for k, r in items if k.startswith(prefix) and _matches(r, where)]

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None


class FileBasedMockDataProvider(MockDataProvider):
    """
    JSON files under ``{data_path}/{layer}/{key}.json``.
    Responsibilities:
    - Read the `extensions` layer first, then fall back to `common`
    - Write into `extensions` when extensions are enabled, else `common`
    - Report I/O and decode errors as ProviderFailure
    """

    def __init__(self, data_path: str, enable_extensions: bool = True):
        self.data_path = data_path
        self.enable_extensions = enable_extensions
        self._lock = threading.Lock()

    @property
    def layers(self) -> List[str]:
        return ["extensions", "common"] if self.enable_extensions else ["common"]

    @property
    def write_layer(self) -> str:
        return self.layers[0]

    def read(self, key: str) -> Optional[Record]:
        for layer in self.layers:
            file_path = self._file_path(layer, key)
            if not os.path.exists(file_path):
                continue
            data = self._load(file_path)
            if data is not None:
                logger.debug("Loaded data from %s", file_path)
                return data
        return None

    def write(self, key: str, record: Record) -> bool:
        file_path = self._file_path(self.write_layer, key)
        with self._lock:
            try:
                self._ensure_parent_dir(file_path)
                tmp_path = file_path + ".tmp"
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(record, f, ensure_ascii=False, indent=2, default=str)
                os.replace(tmp_path, file_path)
            except OSError as exc:
                raise ProviderFailure(f"Failed to write {key}: {exc}") from exc
        logger.debug("Saved data to %s", file_path)
        return True

    def list(self, prefix: str = "", where: Optional[Dict[str, Any]] = None) -> List[Record]:
        # Upper layers shadow lower ones key by key
        merged: Dict[str, Record] = {}
        for layer in reversed(self.layers):
            root = os.path.join(self.data_path, layer)
            for key in self._iter_keys(root):
                if key.startswith(prefix):
                    data = self._load(self._file_path(layer, key))
                    if data is not None:
                        merged[key] = data
        return [merged[k] for k in sorted(merged) if _matches(merged[k], where)]

    def delete(self, key: str) -> bool:
        deleted = False
        with self._lock:
            for layer in self.layers:
                file_path = self._file_path(layer, key)
                try:
                    os.remove(file_path)
                    deleted = True
                except FileNotFoundError:
                    continue
                except OSError as exc:
                    raise ProviderFailure(f"Failed to delete {key}: {exc}") from exc
        return deleted

    def _file_path(self, layer: str, key: str) -> str:
        parts = split_path(key)
        if not parts or any(p in (".", "..") for p in parts):
            raise ProviderFailure(f"Invalid data key: {key!r}")
        return os.path.join(self.data_path, layer, *parts) + ".json"

    @staticmethod
    def _iter_keys(root: str):
        if not os.path.isdir(root):
            return
        for dirpath, _, filenames in os.walk(root):
            for name in filenames:
                if not name.endswith(".json"):
                    continue
                rel = os.path.relpath(os.path.join(dirpath, name[:-5]), root)
                yield rel.replace(os.sep, "/")

    @staticmethod
    def _load(file_path: str) -> Optional[Record]:
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            raise ProviderFailure(f"Failed to load {file_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ProviderFailure(f"Record in {file_path} is not a JSON object")
        return data

    @staticmethod
    def _ensure_parent_dir(path: str) -> None:
        """Create parent directories if needed"""
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
