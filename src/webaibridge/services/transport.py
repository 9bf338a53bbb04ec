"""websocket-client transport that feeds frames into an asyncio event loop."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Mapping

import websocket

from .bridge_types import TransportUnavailable
from .protocol import encode_message

__all__ = ["WebSocketTransport", "host_url"]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 5.0


def host_url(host: str, port: int) -> str:
    return f"ws://{host}:{port}"


class WebSocketTransport:
    """One bridge connection served by a background reader thread.

    Every callback runs on *loop* via ``call_soon_threadsafe`` so the bridge
    state is only ever touched from the event loop thread.
    """

    def __init__(
        self,
        url: str,
        *,
        loop: asyncio.AbstractEventLoop,
        on_open: Callable[[], None],
        on_message: Callable[[str], None],
        on_close: Callable[[], None],
        on_error: Callable[[BaseException], None] | None = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self._url = url
        self._loop = loop
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._on_error = on_error
        self._connect_timeout = connect_timeout
        self._ws: websocket.WebSocket | None = None
        self._thread: threading.Thread | None = None
        self._closing = threading.Event()
        self._send_lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_open(self) -> bool:
        ws = self._ws
        return ws is not None and bool(ws.connected) and not self._closing.is_set()

    def open(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"webaibridge-transport-{self._url}", daemon=True
        )
        self._thread.start()

    def send(self, message: Mapping[str, Any]) -> None:
        ws = self._ws
        if ws is None or not self.is_open:
            raise TransportUnavailable(f"Connection to {self._url} is not open")
        frame = encode_message(message)
        try:
            with self._send_lock:
                ws.send(frame)
        except (OSError, websocket.WebSocketException) as exc:
            raise TransportUnavailable(f"Send to {self._url} failed: {exc}") from exc

    def close(self) -> None:
        self._closing.set()
        ws = self._ws
        if ws is None:
            return
        try:
            ws.close()
        except (OSError, websocket.WebSocketException):
            LOGGER.debug("Error while closing %s", self._url, exc_info=True)

    # ------------------------------------------------------------------
    # Reader thread
    # ------------------------------------------------------------------
    def _run(self) -> None:
        try:
            ws = websocket.create_connection(self._url, timeout=self._connect_timeout)
        except (OSError, websocket.WebSocketException) as exc:
            LOGGER.debug("Connection to %s failed: %s", self._url, exc)
            self._post_error(exc)
            self._post(self._on_close)
            return

        # Reads block until a frame arrives or the socket closes.
        ws.settimeout(None)
        self._ws = ws
        if self._closing.is_set():
            ws.close()
            return
        self._post(self._on_open)
        try:
            while not self._closing.is_set():
                frame = ws.recv()
                if frame is None or frame == "":
                    if not ws.connected:
                        break
                    continue
                if isinstance(frame, bytes):
                    frame = frame.decode("utf-8", errors="replace")
                self._post(self._on_message, frame)
        except websocket.WebSocketConnectionClosedException:
            LOGGER.debug("Connection to %s closed by peer", self._url)
        except (OSError, websocket.WebSocketException) as exc:
            if not self._closing.is_set():
                LOGGER.debug("Connection to %s failed: %s", self._url, exc)
                self._post_error(exc)
        finally:
            self._closing.set()
            self._post(self._on_close)

    def _post_error(self, exc: BaseException) -> None:
        if self._on_error is not None:
            self._post(self._on_error, exc)

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        if self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:  # pragma: no cover - loop closed between check and call
            LOGGER.debug("Event loop closed; dropping transport callback")
