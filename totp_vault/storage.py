"""
Property store port and its adapters.

The vault persists everything as JSON strings under a handful of well-known
property keys. The store itself offers no multi-key atomicity, so every
read-modify-write in the vault runs inside ``transaction()``, which
serializes writers sharing the same store object.

Cross-process locking is not provided: run one writer process per store.
"""
import os
import logging
import tempfile
import threading
from pathlib import Path
from contextlib import contextmanager
from collections.abc import Iterator, Mapping
from typing import Any, Optional, Protocol, Union

import orjson

logger = logging.getLogger("totp_vault")


class PropertyStore(Protocol):
    """Key-value store of string properties."""

    def get_property(self, key: str) -> Optional[str]:
        ...

    def set_property(self, key: str, value: str) -> None:
        ...

    def set_properties(self, values: Mapping[str, str]) -> None:
        ...

    def transaction(self) -> Any:
        """Context manager holding the store's write lock."""
        ...


def read_json(store: PropertyStore, key: str, default: Any) -> Any:
    """Read and decode a JSON property, returning ``default`` when unset."""
    raw = store.get_property(key)
    if not raw:
        return default
    return orjson.loads(raw)


def dump_json(value: Any) -> str:
    """Encode ``value`` for storage as a property string."""
    return orjson.dumps(value).decode("utf-8")


class MemoryPropertyStore:
    """In-process property store backed by a dict."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.RLock()

    def get_property(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_property(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def set_properties(self, values: Mapping[str, str]) -> None:
        with self._lock:
            self._data.update(values)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data.keys())

    @contextmanager
    def transaction(self) -> Iterator["MemoryPropertyStore"]:
        with self._lock:
            yield self


class FilePropertyStore:
    """Property store persisted as one JSON document on disk.

    Writes go to a temporary file in the same directory and replace the
    document atomically.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        content = self._path.read_bytes()
        if not content:
            return {}
        data = orjson.loads(content)
        if not isinstance(data, dict):
            raise ValueError(f"Property file {self._path} does not hold an object")
        return data

    def _save(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(orjson.dumps(data))
                fp.flush()
                os.fsync(fp.fileno())
            os.replace(tmp_name, self._path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Property file %s written (%d keys)", self._path, len(data))

    def get_property(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_property(self, key: str, value: str) -> None:
        self.set_properties({key: value})

    def set_properties(self, values: Mapping[str, str]) -> None:
        with self._lock:
            data = self._load()
            data.update(values)
            self._save(data)

    @contextmanager
    def transaction(self) -> Iterator["FilePropertyStore"]:
        with self._lock:
            yield self
