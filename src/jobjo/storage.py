"""Key-value storage for settings, the last aggregation result and job statuses."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Protocol

from pydantic import ValidationError

from jobjo.blobstore import ensure_blob_root, resolve_blob_root
from jobjo.config import Settings
from jobjo.models import AggregationResult

__all__ = [
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "STORAGE_KEYS",
    "load_cached_result",
    "load_settings",
    "load_statuses",
    "save_cached_result",
    "save_settings",
    "save_statuses",
]

logger = logging.getLogger(__name__)

STORAGE_KEYS = {
    "settings": "jobjo-settings-v1",
    "cache": "jobjo-cache-v1",
    "statuses": "jobjo-statuses-v1",
}


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> bool: ...


class MemoryKeyValueStore:
    """Process-local store, handy for tests and throwaway runs."""

    def __init__(self, initial: Dict[str, str] | None = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        with self._lock:
            self._data[key] = value
        return True


class FileKeyValueStore:
    """Store each key as ``<root>/<key>.json``."""

    def __init__(self, root: Path | str | None = None) -> None:
        self.root = resolve_blob_root(root)

    def _path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read %s: %s", path, exc)
            return None

    def set(self, key: str, value: str) -> bool:
        path = self._path(key)
        try:
            ensure_blob_root(self.root)
            path.write_text(value, encoding="utf-8")
        except OSError as exc:  # pragma: no cover - filesystem failures are environmental
            logger.warning("Failed to write %s: %s", path, exc)
            return False
        return True


def load_settings(store: KeyValueStore) -> Settings:
    """Return stored settings, or the defaults when nothing usable is stored."""

    raw = store.get(STORAGE_KEYS["settings"])
    if not raw:
        return Settings()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Stored settings are not valid JSON: %s", exc)
        return Settings()
    return Settings.from_payload(payload)


def save_settings(store: KeyValueStore, settings: Settings) -> bool:
    return store.set(STORAGE_KEYS["settings"], settings.model_dump_json(by_alias=True))


def load_cached_result(store: KeyValueStore) -> AggregationResult | None:
    """Load the most recently stored aggregation result if it exists."""

    raw = store.get(STORAGE_KEYS["cache"])
    if not raw:
        return None
    try:
        return AggregationResult.from_json(raw)
    except ValidationError as exc:
        logger.warning("Stored aggregation result is invalid: %s", exc)
        return None


def save_cached_result(store: KeyValueStore, result: AggregationResult) -> bool:
    return store.set(STORAGE_KEYS["cache"], result.to_json())


def load_statuses(store: KeyValueStore) -> Dict[str, str]:
    raw = store.get(STORAGE_KEYS["statuses"])
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Stored job statuses are not valid JSON: %s", exc)
        return {}
    if not isinstance(payload, dict):
        return {}
    return {str(key): str(value) for key, value in payload.items()}


def save_statuses(store: KeyValueStore, statuses: Dict[str, str]) -> bool:
    return store.set(STORAGE_KEYS["statuses"], json.dumps(statuses, ensure_ascii=False))
