"""Persistence bridge: optional read-through/write-through snapshots.

Backends implement a narrow synchronous contract: ``get`` returns the stored
value or None on a miss, ``set`` and ``remove`` may raise. The bridge
swallows every backend failure and reports it as a miss; a snapshot is an
accelerator for the first paint, never the source of truth.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from .errors import PersistenceFailure
from .models import Settlement, Status
from .store import AsyncEntry

_logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Session-scoped store; lives as long as the object."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore:
    """Last-value snapshot kept in a single JSON document.

    The file is read lazily on first access and rewritten atomically on every
    change. Values must be JSON serializable.
    """

    def __init__(self, path: Union[str, os.PathLike[str]]) -> None:
        self._path = Path(path)
        self._data: Optional[Dict[str, Any]] = None

    def _load(self) -> Dict[str, Any]:
        if self._data is None:
            try:
                raw = self._path.read_text(encoding="utf-8")
            except FileNotFoundError:
                self._data = {}
            except OSError as exc:
                raise PersistenceFailure(f"cannot read {self._path}: {exc}") from exc
            else:
                try:
                    loaded = json.loads(raw) if raw.strip() else {}
                except ValueError as exc:
                    raise PersistenceFailure(f"corrupt snapshot file {self._path}") from exc
                if not isinstance(loaded, dict):
                    raise PersistenceFailure(f"snapshot file {self._path} is not an object")
                self._data = loaded
        return self._data

    def _flush(self, data: Dict[str, Any]) -> None:
        try:
            encoded = json.dumps(data, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise PersistenceFailure(f"value is not JSON serializable: {exc}") from exc
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=self._path.name, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(encoded)
            os.replace(tmp, self._path)
        except OSError as exc:
            raise PersistenceFailure(f"cannot write {self._path}: {exc}") from exc

    def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = dict(self._load())
        data[key] = value
        self._flush(data)
        self._data = data

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            data = {k: v for k, v in data.items() if k != key}
            self._flush(data)
            self._data = data


class PersistenceBridge:
    def __init__(self, backend: KeyValueStore, *, prefix: str = "") -> None:
        self._backend = backend
        self._prefix = prefix

    def _name(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def load(self, key: str) -> Optional[Any]:
        try:
            return self._backend.get(self._name(key))
        except Exception as exc:
            _logger.warning(
                "snapshot read failed; treating as miss",
                extra={"op": "persist_load", "key": key, "error": str(exc)},
            )
            return None

    def save(self, key: str, value: Any) -> bool:
        try:
            self._backend.set(self._name(key), value)
        except Exception as exc:
            _logger.warning(
                "snapshot write failed",
                extra={"op": "persist_save", "key": key, "error": str(exc)},
            )
            return False
        return True

    def remove(self, key: str) -> None:
        try:
            self._backend.remove(self._name(key))
        except Exception as exc:
            _logger.warning(
                "snapshot remove failed",
                extra={"op": "persist_remove", "key": key, "error": str(exc)},
            )

    def seed(self, entry: AsyncEntry) -> bool:
        """Fill a never-fetched entry from its snapshot. True on a hit."""
        if entry.is_fetched or entry.in_flight is not None:
            return False
        value = self.load(entry.key)
        if value is None:
            return False
        entry.data = value
        entry.is_fetched = True
        entry.seeded = True
        # No network success yet: the first mount revalidates in the background
        entry.last_success_at = None
        entry.status = Status.SUCCESS if entry.enabled else Status.DISABLED
        _logger.debug("entry seeded from snapshot", extra={"op": "persist_load", "key": entry.key})
        return True

    def on_settled(self, entry: AsyncEntry, settlement: Settlement) -> None:
        if settlement.ok and entry.options.store:
            self.save(entry.key, entry.data)


__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "PersistenceBridge",
]
