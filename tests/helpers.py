"""Shared test helpers and stub classes.

Fake transports and probes stand in for live editor hosts so bridge tests
never touch the network.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Mapping

from webaibridge.services.bridge_types import InstanceRecord, TransportUnavailable

Responder = Callable[[dict[str, Any]], "Iterable[Mapping[str, Any]] | Mapping[str, Any] | None"]


class FakeTransport:
    """Transport stub driven by the test: call ``accept``/``deliver``/``drop`` to simulate the host."""

    def __init__(
        self,
        url: str,
        *,
        loop: asyncio.AbstractEventLoop,
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_close: Callable[[], None],
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self.url = url
        self.loop = loop
        self.sent: list[dict[str, Any]] = []
        self.opened = False
        self.closed = False
        self.responder: Responder | None = None
        self.auto_accept = False
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    def open(self) -> None:
        self.opened = True
        if self.auto_accept:
            self.loop.call_soon(self._on_open)

    def send(self, message: Mapping[str, Any]) -> None:
        if self.closed:
            raise TransportUnavailable("fake transport closed")
        payload = dict(message)
        self.sent.append(payload)
        if self.responder is None:
            return
        replies = self.responder(payload)
        if replies is None:
            return
        if isinstance(replies, Mapping):
            replies = [replies]
        for reply in replies:
            self.loop.call_soon(self._on_message, json.dumps(dict(reply)))

    def close(self) -> None:
        self.closed = True

    # Host simulation -------------------------------------------------
    def accept(self) -> None:
        self._on_open()

    def deliver(self, message: Mapping[str, Any] | str) -> None:
        self._on_message(message if isinstance(message, str) else json.dumps(dict(message)))

    def drop(self) -> None:
        self._on_close()

    def fail(self, exc: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(exc)

    def sent_types(self) -> list[str]:
        return [message.get("type", "") for message in self.sent]


class TransportRecorder:
    """Transport factory that keeps every transport it builds."""

    def __init__(self, responder: Responder | None = None, *, auto_accept: bool = False) -> None:
        self.transports: list[FakeTransport] = []
        self._responder = responder
        self._auto_accept = auto_accept

    def __call__(self, url: str, **kwargs: Any) -> FakeTransport:
        transport = FakeTransport(url, **kwargs)
        transport.responder = self._responder
        transport.auto_accept = self._auto_accept
        self.transports.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.transports[-1]


def make_probe(live: Mapping[int, InstanceRecord], *, delay: float = 0.0):
    """Async probe answering only for the ports in *live*."""

    async def _probe(host: str, port: int, timeout: float) -> InstanceRecord | None:
        if delay:
            await asyncio.sleep(delay)
        return live.get(port)

    return _probe


def context_responder(texts: Mapping[str, str]) -> Responder:
    """Reply to GET_CONTEXT requests with canned text keyed by context type or file path."""

    def _respond(message: dict[str, Any]) -> dict[str, Any] | None:
        if message.get("type") != "GET_CONTEXT":
            return None
        key = message.get("filePath") or message.get("contextType")
        if key not in texts:
            return None
        return {
            "type": "CONTEXT_RESPONSE",
            "requestId": message["requestId"],
            "text": texts[key],
            "label": str(key),
        }

    return _respond
