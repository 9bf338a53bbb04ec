"""Durable key-value store used for the selected port, chip snapshots and preferences."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Iterable, Mapping, Protocol

from .settings import default_settings_dir

__all__ = ["InMemoryKeyValueStore", "JsonFileKeyValueStore", "KeyValueStore"]

LOGGER = logging.getLogger(__name__)
_STATE_FILENAME = "state.json"
_STATE_VERSION = 1


class KeyValueStore(Protocol):
    """Minimal durable storage contract."""

    def get(self, keys: Iterable[str]) -> dict[str, Any]:  # pragma: no cover - protocol stub
        ...

    def set(self, values: Mapping[str, Any]) -> None:  # pragma: no cover - protocol stub
        ...


class InMemoryKeyValueStore:
    """Ephemeral store for tests and sessions that should not touch disk."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = Lock()

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            return {key: self._data[key] for key in keys if key in self._data}

    def set(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            self._data.update(values)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._data)


class JsonFileKeyValueStore:
    """JSON file store written atomically through a temporary file."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or (default_settings_dir() / _STATE_FILENAME)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, keys: Iterable[str]) -> dict[str, Any]:
        with self._lock:
            payload = self._read_payload()
        return {key: payload[key] for key in keys if key in payload}

    def set(self, values: Mapping[str, Any]) -> None:
        if not values:
            return
        with self._lock:
            payload = self._read_payload()
            payload.update(values)
            payload["version"] = _STATE_VERSION
            body = json.dumps(payload, indent=2, sort_keys=True)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(body, encoding="utf-8")
            tmp_path.replace(self._path)

    def _read_payload(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            if isinstance(data, Mapping):
                return dict(data)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("State file %s is not valid JSON: %s", self._path, exc)
        return {}
