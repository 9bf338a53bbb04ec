"""Request/response correlation with per-request deadlines."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Any, Callable, Mapping

from .bridge_types import MessageType, PendingRequest, RequestTimeout

__all__ = ["RequestCorrelator", "new_request_id"]

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 15000
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def new_request_id() -> str:
    """Time-based prefix plus a random suffix, unique within a session."""

    return f"{_base36(int(time.time() * 1000))}-{secrets.token_hex(4)}"


def _chunk_text(part: Any) -> str:
    """Stream parts arrive as plain strings or as ``{"text": ...}`` objects."""

    if isinstance(part, str):
        return part
    if isinstance(part, Mapping):
        text = part.get("text")
        return text if isinstance(text, str) else ""
    LOGGER.debug("Ignoring stream part of type %s", type(part).__name__)
    return ""


class RequestCorrelator:
    """Tracks in-flight requests keyed by ``requestId``.

    Each request ends exactly once: the response path and the expiry path both
    pop the pending entry before acting, so whichever runs second finds
    nothing and does nothing.
    """

    def __init__(
        self,
        transmit: Callable[[Mapping[str, Any]], None],
        *,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._transmit = transmit
        self._default_timeout_ms = default_timeout_ms
        self._pending: dict[str, PendingRequest] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def is_pending(self, request_id: str) -> bool:
        return request_id in self._pending

    async def send(self, payload: Mapping[str, Any], timeout_ms: int | None = None) -> dict[str, Any]:
        """Transmit *payload* with a fresh ``requestId`` and await its response.

        Raises :class:`TransportUnavailable` immediately when the connection is
        not open, and :class:`RequestTimeout` when the deadline passes first.
        """

        loop = asyncio.get_running_loop()
        timeout = max(0.0, (self._default_timeout_ms if timeout_ms is None else timeout_ms) / 1000.0)
        request_id = new_request_id()
        while request_id in self._pending:  # pragma: no cover - astronomically unlikely
            request_id = new_request_id()

        pending = PendingRequest(request_id=request_id, future=loop.create_future())
        self._pending[request_id] = pending
        try:
            self._transmit({**payload, "requestId": request_id})
        except BaseException:
            self._pending.pop(request_id, None)
            raise
        pending.timer = loop.call_later(timeout, self._expire, request_id, timeout)
        try:
            return await pending.future
        except asyncio.CancelledError:
            self._discard(request_id)
            raise

    def handle_response(self, message: Mapping[str, Any]) -> bool:
        """Route an inbound message carrying ``requestId``.

        Returns ``False`` when no request is waiting for it (late or unknown).
        """

        request_id = message.get("requestId")
        if not isinstance(request_id, str):
            return False
        pending = self._pending.get(request_id)
        if pending is None:
            LOGGER.debug("Dropping response for unknown or expired request %s", request_id)
            return False

        if message.get("type") == MessageType.CONTEXT_RESPONSE_STREAM.value:
            if not self._accumulate(pending, message):
                return True
            result: dict[str, Any] = {
                **message,
                "type": MessageType.CONTEXT_RESPONSE.value,
                "text": "".join(pending.stream_parts),
                "streamed": True,
            }
            result.pop("chunks", None)
            result.pop("chunk", None)
        else:
            result = dict(message)

        self._pending.pop(request_id, None)
        if pending.timer is not None:
            pending.timer.cancel()
        if not pending.future.done():
            pending.future.set_result(result)
        return True

    def cancel_all(self) -> None:
        """Drop every pending request; awaiting callers are cancelled."""

        pending, self._pending = self._pending, {}
        for entry in pending.values():
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.cancel()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _accumulate(self, pending: PendingRequest, message: Mapping[str, Any]) -> bool:
        chunks = message.get("chunks")
        if isinstance(chunks, str):
            pending.stream_parts.append(chunks)
        elif isinstance(chunks, list):
            pending.stream_parts.extend(_chunk_text(part) for part in chunks)
        single = message.get("chunk")
        if single is not None:
            pending.stream_parts.append(_chunk_text(single))

        total_size = message.get("totalSize")
        if isinstance(total_size, int) and total_size > 0:
            pending.stream_size = total_size
        done = message.get("done")
        if isinstance(done, bool):
            return done
        if pending.stream_size:
            return sum(len(part) for part in pending.stream_parts) >= pending.stream_size
        return True

    def _expire(self, request_id: str, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        LOGGER.debug("Request %s timed out after %.3fs", request_id, timeout)
        if not pending.future.done():
            pending.future.set_exception(RequestTimeout(request_id, timeout))

    def _discard(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
