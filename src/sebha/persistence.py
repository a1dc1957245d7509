"""
Key-Value Persistence Module

The narrow storage surface used by ``CounterStore``: string keys mapped to
primitive values (str, int, lists of those, and str-keyed dicts). Two
backends are provided:
- MemoryKeyValueStore: process-local dict, used in tests and ephemeral runs
- JsonFileKeyValueStore: one JSON document on disk, replaced atomically

Absent keys read back as the caller's default. There is no schema versioning.
"""

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Mapping, Protocol

from .errors import PersistenceError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def update(self, values: Mapping[str, Any]) -> None:
        """Write several keys as one transaction."""
        ...


class MemoryKeyValueStore:
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def update(self, values: Mapping[str, Any]) -> None:
        self._data.update(copy.deepcopy(dict(values)))


class JsonFileKeyValueStore:
    """
    Store backed by a single UTF-8 JSON file.

    Every write serializes the whole document to a temp file in the same
    directory and swaps it in with ``os.replace``, so a crash mid-write
    leaves the previous document intact.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._data = self._read()

    def _read(self) -> dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {self.path}, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"{self.path} does not hold a JSON object, starting empty")
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, Any]) -> None:
        staged = {**self._data, **copy.deepcopy(dict(values))}
        self._write(staged)
        self._data = staged

    def _write(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, ensure_ascii=False, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e
