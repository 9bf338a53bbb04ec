"""Bridge settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from ..budget.estimator import ModelFamily
from ..budget.limit_policy import LimitMode

__all__ = ["BridgeSettings", "SettingsStore", "default_settings_dir"]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".webaibridge"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "WEBAIBRIDGE_HOST": "host",
    "WEBAIBRIDGE_MODEL": "model",
    "WEBAIBRIDGE_MODEL_FAMILY": "model_family",
    "WEBAIBRIDGE_LIMIT_MODE": "limit_mode",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "WEBAIBRIDGE_DEBUG_LOGGING": "debug_logging",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "WEBAIBRIDGE_PORT_RANGE_START": "port_range_start",
    "WEBAIBRIDGE_PORT_RANGE_END": "port_range_end",
    "WEBAIBRIDGE_MESSAGE_LIMIT": "message_limit",
    "WEBAIBRIDGE_REQUEST_TIMEOUT_MS": "request_timeout_ms",
    "WEBAIBRIDGE_PROBE_TIMEOUT_MS": "probe_timeout_ms",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


def default_settings_dir() -> Path:
    return _SETTINGS_DIR


@dataclass(slots=True)
class BridgeSettings:
    """User-configurable bridge settings persisted between sessions."""

    host: str = "localhost"
    port_range_start: int = 64923
    port_range_end: int = 64932
    probe_timeout_ms: int = 1000
    request_timeout_ms: int = 15000
    reconnect_base_delay_ms: int = 1000
    reconnect_max_delay_ms: int = 30000
    max_reconnect_attempts: int = 8
    keepalive_interval_seconds: float = 20.0
    model: str = "gpt-4"
    model_family: str = ModelFamily.GENERIC.value
    limit_mode: str = LimitMode.WARN.value
    message_limit: int = 0
    chunk_overlap_tokens: int = 0
    auto_insert: bool = False
    mention_trigger: str = "@"
    model_limits: dict[str, int] = field(default_factory=dict)
    debug_logging: bool = False

    @property
    def ports(self) -> range:
        return range(self.port_range_start, self.port_range_end + 1)

    @property
    def custom_limit(self) -> int | None:
        return self.message_limit if self.message_limit > 0 else None


class SettingsStore:
    """Persistence adapter for :class:`BridgeSettings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> BridgeSettings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = BridgeSettings()
        if payload:
            data = _filter_fields(payload)
            limits = data.get("model_limits")
            if limits is not None:
                data["model_limits"] = _coerce_limits(limits)
            try:
                settings = BridgeSettings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = BridgeSettings()

        if payload and payload.get("version") != _SETTINGS_VERSION:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - depends on filesystem
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        return _normalize(settings)

    def save(self, settings: BridgeSettings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            data = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return data

    def _apply_overrides(
        self,
        settings: BridgeSettings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> BridgeSettings:
        allowed = {field.name for field in fields(BridgeSettings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        limits_override = filtered.get("model_limits")
        if isinstance(limits_override, Mapping):
            merged = dict(settings.model_limits)
            merged.update(_coerce_limits(limits_override))
            filtered["model_limits"] = merged
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: BridgeSettings) -> BridgeSettings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(BridgeSettings)}
    return {key: value for key, value in payload.items() if key in allowed}


def _coerce_limits(value: Any) -> dict[str, int]:
    if not isinstance(value, Mapping):
        return {}
    limits: dict[str, int] = {}
    for name, limit in value.items():
        try:
            parsed = int(limit)
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring invalid token limit for %s: %r", name, limit)
            continue
        if parsed > 0:
            limits[str(name)] = parsed
    return limits


def _normalize(settings: BridgeSettings) -> BridgeSettings:
    start, end = settings.port_range_start, settings.port_range_end
    if start > end:
        start, end = end, start
    return replace(
        settings,
        port_range_start=start,
        port_range_end=end,
        limit_mode=LimitMode.coerce(settings.limit_mode).value,
        model_family=ModelFamily.coerce(settings.model_family).value,
        message_limit=max(0, int(settings.message_limit)),
        chunk_overlap_tokens=max(0, int(settings.chunk_overlap_tokens)),
    )
