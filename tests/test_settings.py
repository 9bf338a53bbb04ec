"""Tests for settings persistence and overrides."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from webaibridge.services.settings import BridgeSettings, SettingsStore


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings == BridgeSettings()
    assert settings.limit_mode == "warn"
    assert settings.custom_limit is None
    assert list(settings.ports)[0] == settings.port_range_start


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "nested" / "settings.json")
    original = BridgeSettings(model="claude-3-opus", limit_mode="chunk", message_limit=4000, model_limits={"local": 2048})

    path = store.save(original)

    assert path.exists()
    assert not path.with_suffix(".tmp").exists()
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["version"] == 1
    loaded = store.load()
    assert loaded == original
    assert loaded.custom_limit == 4000


def test_invalid_json_falls_back_with_warning(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        settings = SettingsStore(path).load()

    assert settings == BridgeSettings()
    assert "not valid JSON" in caplog.text


def test_unknown_fields_are_ignored_and_payload_migrated(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"model": "gpt-4o", "legacy_theme": "dark"}), encoding="utf-8")

    settings = SettingsStore(path).load()

    assert settings.model == "gpt-4o"
    migrated = json.loads(path.read_text(encoding="utf-8"))
    assert migrated["version"] == 1
    assert "legacy_theme" not in migrated


def test_invalid_model_limits_are_dropped(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"version": 1, "model_limits": {"good": "1024", "bad": "lots", "zero": 0}}),
        encoding="utf-8",
    )

    assert SettingsStore(path).load().model_limits == {"good": 1024}


def test_values_are_normalized(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")

    settings = store.load(
        overrides={
            "port_range_start": 3010,
            "port_range_end": 3000,
            "limit_mode": "SHOUT",
            "model_family": "Gemini",
            "message_limit": -5,
            "chunk_overlap_tokens": -1,
        }
    )

    assert (settings.port_range_start, settings.port_range_end) == (3000, 3010)
    assert settings.limit_mode == "warn"
    assert settings.model_family == "gemini"
    assert settings.message_limit == 0
    assert settings.chunk_overlap_tokens == 0


def test_cli_overrides_merge_model_limits(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")
    store.save(BridgeSettings(model_limits={"a": 100}))

    settings = store.load(overrides={"model_limits": {"b": 200}, "unknown": 1, "model": None})

    assert settings.model_limits == {"a": 100, "b": 200}
    assert settings.model == "gpt-4"


def test_environment_overrides_win(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WEBAIBRIDGE_HOST", "127.0.0.1")
    monkeypatch.setenv("WEBAIBRIDGE_LIMIT_MODE", "truncate")
    monkeypatch.setenv("WEBAIBRIDGE_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("WEBAIBRIDGE_MESSAGE_LIMIT", "1500")

    settings = SettingsStore(tmp_path / "settings.json").load(overrides={"host": "example.invalid"})

    assert settings.host == "127.0.0.1"
    assert settings.limit_mode == "truncate"
    assert settings.debug_logging is True
    assert settings.message_limit == 1500


def test_invalid_integer_environment_override_is_ignored(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("WEBAIBRIDGE_PORT_RANGE_START", "eleven")

    with caplog.at_level(logging.WARNING):
        settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.port_range_start == BridgeSettings().port_range_start
    assert "WEBAIBRIDGE_PORT_RANGE_START" in caplog.text
