"""Tests for the logging bootstrap."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from webaibridge.utils import logging as logging_utils


@pytest.fixture
def restore_root_logging(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    monkeypatch.setattr(logging_utils, "_LOG_PATH", None)
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(False)


def test_setup_logging_writes_rotating_file(tmp_path: Path, restore_root_logging: None) -> None:
    path = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False)

    logging_utils.get_logger("webaibridge.test").info("bridge ready")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert path == tmp_path / "webaibridge.log"
    assert logging_utils.get_log_path() == path
    assert "bridge ready" in path.read_text(encoding="utf-8")
    assert logging.getLogger("websocket").level == logging.WARNING


def test_setup_logging_is_idempotent_unless_forced(tmp_path: Path, restore_root_logging: None) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False)
    second = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False)
    forced = logging_utils.setup_logging(log_dir=tmp_path / "b", console=False, force=True)

    assert second == first
    assert forced == tmp_path / "b" / "webaibridge.log"


def test_log_dir_environment_override(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, restore_root_logging: None
) -> None:
    monkeypatch.setenv("WEBAIBRIDGE_LOG_DIR", str(tmp_path / "env"))

    path = logging_utils.setup_logging(console=False)

    assert path == tmp_path / "env" / "webaibridge.log"


def test_set_level_adjusts_handlers_and_keeps_noisy_loggers_quiet(
    tmp_path: Path, restore_root_logging: None
) -> None:
    logging_utils.setup_logging(logging.INFO, log_dir=tmp_path, console=False)

    logging_utils.set_level(logging.DEBUG)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert all(handler.level == logging.DEBUG for handler in root.handlers)
    assert logging.getLogger("asyncio").level == logging.WARNING

    logging_utils.set_level(logging.ERROR)
    assert logging.getLogger("websocket").level == logging.ERROR
