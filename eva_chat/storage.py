from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .errors import PersistenceReadError

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStorage(Protocol):
    """Synchronous string-keyed storage, the desktop stand-in for localStorage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._values


class JsonFileStorage:
    """Keeps one ``<key>.json`` file per key inside ``directory``."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # 書き込み途中で落ちても既存ファイルを壊さないよう一時ファイル経由で置き換える
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def _path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._directory / f"{key}.json"


class JsonRepository:
    """``load() -> payload | None`` / ``save(payload)`` over one storage key."""

    def __init__(self, storage: KeyValueStorage, key: str) -> None:
        self._storage = storage
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> Any | None:
        """Return the decoded payload, ``None`` when nothing was stored.

        Raises ``PersistenceReadError`` when the stored value cannot be read
        or decoded.
        """

        try:
            raw = self._storage.get(self._key)
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceReadError(f"Failed to read {self._key}: {exc}") from exc
        if raw is None or not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceReadError(f"Malformed JSON in {self._key}: {exc}") from exc

    def save(self, payload: Any) -> bool:
        # 保存は fire-and-forget。失敗してもログに残すだけで UI は止めない
        try:
            self._storage.set(self._key, json.dumps(payload, ensure_ascii=False, indent=2))
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to persist %s: %s", self._key, exc)
            return False
        return True

    def clear(self) -> None:
        try:
            self._storage.delete(self._key)
        except OSError as exc:
            logger.warning("Failed to clear %s: %s", self._key, exc)
