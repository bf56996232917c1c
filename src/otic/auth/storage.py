"""Durable local storage for the persisted session."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class SessionStorage(Protocol):
    """Key/value store the session is persisted to between process runs."""

    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any]) -> None: ...

    def remove(self, key: str) -> None: ...


class MemorySessionStorage:
    """In-process storage, used in tests and for ephemeral clients."""

    def __init__(self) -> None:
        self._items: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        value = self._items.get(key)
        return dict(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        self._items[key] = dict(value)

    def remove(self, key: str) -> None:
        self._items.pop(key, None)


class FileSessionStorage:
    """
    JSON file holding a mapping of namespaced keys to serialized values.

    Every write replaces the whole file through a temporary sibling and
    `os.replace`, so readers never observe a half-written or half-cleared
    session.

    Attributes:
        path: Location of the JSON file (parent directories are created on write)

    Example:
        >>> storage = FileSessionStorage(".otic/session.json")
        >>> storage.set("otic.auth.session", session.model_dump(mode="json"))
        >>> storage.remove("otic.auth.session")
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, dict) else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key not in data:
                return
            del data[key]
            self._write(data)

    def _read(self) -> dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            # Undecodable bytes and invalid JSON both surface as ValueError.
            logger.warning(
                f"Session storage at {self.path} is unreadable, ignoring it: {e}",
                extra={"error_type": "corrupt_session_storage"},
            )
            return {}

        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
