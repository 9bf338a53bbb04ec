"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from webaibridge.chips.buffers import StringBuffer


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("WEBAIBRIDGE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def buffer() -> StringBuffer:
    return StringBuffer()
