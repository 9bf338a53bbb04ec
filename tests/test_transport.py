"""Tests for the websocket-client transport."""

from __future__ import annotations

import asyncio
import socket

import pytest

from webaibridge.services.bridge_types import TransportUnavailable
from webaibridge.services.transport import WebSocketTransport, host_url


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_host_url() -> None:
    assert host_url("localhost", 64923) == "ws://localhost:64923"


@pytest.mark.asyncio
async def test_send_before_open_raises() -> None:
    transport = WebSocketTransport(
        "ws://127.0.0.1:1",
        loop=asyncio.get_running_loop(),
        on_open=lambda: None,
        on_message=lambda raw: None,
        on_close=lambda: None,
    )

    assert not transport.is_open
    with pytest.raises(TransportUnavailable):
        transport.send({"type": "PING"})
    transport.close()


@pytest.mark.asyncio
async def test_refused_connection_reports_error_then_close() -> None:
    events: list[str] = []
    closed = asyncio.Event()

    def _on_close() -> None:
        events.append("close")
        closed.set()

    transport = WebSocketTransport(
        host_url("127.0.0.1", _free_port()),
        loop=asyncio.get_running_loop(),
        on_open=lambda: events.append("open"),
        on_message=lambda raw: events.append("message"),
        on_close=_on_close,
        on_error=lambda exc: events.append("error"),
        connect_timeout=1.0,
    )
    transport.open()

    await asyncio.wait_for(closed.wait(), timeout=5.0)

    assert events == ["error", "close"]
    assert not transport.is_open
