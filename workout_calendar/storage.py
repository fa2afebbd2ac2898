"""String-keyed durable storage for tokens and cached payloads.

Both services persist through the small ``KeyValueStore`` surface: ``get``,
``set`` and ``multi_remove`` of string values. ``JsonFileStore`` keeps a
single JSON document on disk and re-reads it on every access so a value
committed by another process is always observed.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

from .config import STORAGE_PATH

LOGGER = logging.getLogger(__name__)

__all__ = ["KeyValueStore", "JsonFileStore", "MemoryStore", "get_default_store"]


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def multi_remove(self, keys: Iterable[str]) -> None: ...


class JsonFileStore:
    """Key-value store persisted as one JSON object.

    Every operation re-reads the file, and writes go through a uniquely named
    temp file that replaces the target. The lock serialises read-modify-write
    within one process only; two processes writing at once may lose an update.
    """

    def __init__(self, path: Path | str = STORAGE_PATH) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, str]:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            LOGGER.error("Failed reading storage file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning(
                "Storage file %s held %s instead of an object; ignoring",
                self._path,
                type(data).__name__,
            )
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            delete=False,
        ) as handle:
            temp_path = Path(handle.name)
            try:
                json.dump(data, handle, ensure_ascii=True, sort_keys=True)
            except BaseException:
                handle.close()
                temp_path.unlink(missing_ok=True)
                raise
        try:
            os.chmod(temp_path, 0o600)
        except OSError:  # pragma: no cover - platform dependent
            LOGGER.debug("Could not restrict permissions on %s", temp_path)
        try:
            temp_path.replace(self._path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def multi_remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            data = self._read()
            removed = False
            for key in keys:
                if key in data:
                    del data[key]
                    removed = True
            if removed:
                self._write(data)


class MemoryStore:
    """In-process store used by tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def multi_remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._data)


_DEFAULT_STORE: Optional[JsonFileStore] = None
_default_lock = threading.Lock()


def get_default_store() -> JsonFileStore:
    """Return the shared file store at ``STORAGE_PATH``."""

    global _DEFAULT_STORE
    with _default_lock:
        if _DEFAULT_STORE is None:
            _DEFAULT_STORE = JsonFileStore(STORAGE_PATH)
        return _DEFAULT_STORE
