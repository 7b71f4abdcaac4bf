from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)


class JsonStateStore:
    """Key-value persistence backed by a single JSON file.

    Reads return ``None`` for missing keys or an unreadable file; writes
    replace the file atomically.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self._cache: dict[str, Any] | None = None

    def _read_all(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache
        if not self.path.exists():
            self._cache = {}
            return self._cache
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.error("Failed to read persisted state from %s: %s", self.path, exc)
            data = {}
        if not isinstance(data, dict):
            logger.error("Persisted state in %s is not an object; ignoring it", self.path)
            data = {}
        self._cache = data
        return self._cache

    def load(self, key: str) -> Any:
        return self._read_all().get(key)

    def save(self, values: dict[str, Any]) -> None:
        data = dict(self._read_all())
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
        os.replace(temp_path, self.path)
        self._cache = data


class MemoryStateStore:
    """In-process store with the same interface, used for headless sessions."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(initial or {})
        self.save_count = 0

    def load(self, key: str) -> Any:
        return self.data.get(key)

    def save(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            if value is None:
                self.data.pop(key, None)
            else:
                self.data[key] = value
        self.save_count += 1
