"""Key-value persistence used by the session manager.

The core only needs get/set/remove by string key. Applications plug in
their own backing (keychain, preferences file, database); two simple
implementations are provided here.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

_LOGGER = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    """Opaque key-value store."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process store, mostly useful for tests and short-lived tools."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class JsonFileKeyValueStore:
    """Store persisted as a single JSON document.

    Values are kept base64-encoded. Every write replaces the file atomically
    so a crash never leaves a half-written document behind.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._data = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, bytes]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return {key: base64.b64decode(value) for key, value in raw.items()}
        except (ValueError, TypeError, AttributeError) as err:
            _LOGGER.warning("Ignoring unreadable store %s: %s", self._path, err)
            return {}

    def _write(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            key: base64.b64encode(value).decode("ascii")
            for key, value in self._data.items()
        }
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> bytes | None:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        previous = self._data.get(key)
        self._data[key] = value
        try:
            self._write()
        except OSError:
            if previous is None:
                del self._data[key]
            else:
                self._data[key] = previous
            raise

    def remove(self, key: str) -> None:
        previous = self._data.pop(key, None)
        if previous is None:
            return
        try:
            self._write()
        except OSError:
            self._data[key] = previous
            raise
