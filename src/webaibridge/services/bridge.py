"""Bridge connection manager maintaining the link to one editor host."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

from tenacity import RetryCallState, stop_after_attempt, wait_exponential

from ..budget.chunker import ChunkQueue
from ..budget.estimator import TokenEstimator
from ..budget.limit_policy import ChunkDecision, InsertDecision, LimitPolicy
from ..chips.buffers import TextBuffer
from ..chips.formatting import ChipRecord, format_chips_for_insert, parse_chip_records
from ..chips.registry import ChipKind, ChipRegistry
from .bridge_types import (
    ConnectionState,
    InstanceRecord,
    MalformedMessage,
    MessageType,
    Transport,
    TransportFactory,
    TransportUnavailable,
)
from .correlator import RequestCorrelator
from .discovery import InstanceDirectory, select_instance
from .protocol import decode_message, message_type
from .settings import BridgeSettings
from .storage import InMemoryKeyValueStore, KeyValueStore
from .telemetry import emit as telemetry_emit
from .transport import WebSocketTransport, host_url

__all__ = ["BridgeConnectionManager", "BridgeContext", "ReconnectBackoff"]

LOGGER = logging.getLogger(__name__)


class ReconnectBackoff:
    """Exponential reconnect delays with an attempt cap.

    Delay for attempt ``n`` is ``min(max_delay, base_delay * 2 ** (n - 1))``.
    """

    def __init__(self, base_delay_ms: int, max_delay_ms: int, max_attempts: int) -> None:
        self._wait = wait_exponential(multiplier=base_delay_ms / 1000.0, max=max_delay_ms / 1000.0)
        self._stop = stop_after_attempt(max(1, max_attempts))
        self._state = RetryCallState(None, None, (), {})
        self._attempts = 0
        self.max_attempts = max(1, max_attempts)

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def exhausted(self) -> bool:
        if self._attempts == 0:
            return False
        self._state.attempt_number = self._attempts
        return bool(self._stop(self._state))

    def next_delay(self) -> float | None:
        """Count one more attempt and return its delay in seconds, or ``None`` when capped."""

        if self.exhausted:
            return None
        self._attempts += 1
        self._state.attempt_number = self._attempts
        return float(self._wait(self._state))

    def reset(self) -> None:
        self._attempts = 0


@dataclass(slots=True)
class BridgeContext:
    """Every piece of mutable bridge state, constructed once per process."""

    settings: BridgeSettings = field(default_factory=BridgeSettings)
    store: KeyValueStore = field(default_factory=InMemoryKeyValueStore)
    estimator: TokenEstimator = field(default_factory=TokenEstimator)
    registry: ChipRegistry | None = None
    state: ConnectionState = ConnectionState.DISCONNECTED
    selected_port: int | None = None
    connected_instance: InstanceRecord | None = None
    instances: list[InstanceRecord] = field(default_factory=list)
    host_chips: list[ChipRecord] = field(default_factory=list)
    focused_buffer: TextBuffer | None = None
    backoff: ReconnectBackoff | None = None
    reconnect_exhausted: bool = False

    def __post_init__(self) -> None:
        if self.registry is None:
            self.registry = ChipRegistry(self.estimator)
        if self.backoff is None:
            self.backoff = ReconnectBackoff(
                self.settings.reconnect_base_delay_ms,
                self.settings.reconnect_max_delay_ms,
                self.settings.max_reconnect_attempts,
            )

    @classmethod
    def create(
        cls,
        settings: BridgeSettings | None = None,
        *,
        store: KeyValueStore | None = None,
    ) -> "BridgeContext":
        """Build a context and restore the durable fields from *store*."""

        settings = settings or BridgeSettings()
        store = store or InMemoryKeyValueStore()
        estimator = TokenEstimator(settings.model_limits, family=settings.model_family)
        context = cls(settings=settings, store=store, estimator=estimator)
        saved = store.get(["selectedPort", "contextChips"])
        port = saved.get("selectedPort")
        if isinstance(port, int) and not isinstance(port, bool):
            context.selected_port = port
        context.host_chips = parse_chip_records(saved.get("contextChips"))
        return context


class BridgeConnectionManager:
    """Owns the connection state machine, reconnection and inbound dispatch."""

    def __init__(
        self,
        context: BridgeContext,
        *,
        directory: InstanceDirectory | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._context = context
        settings = context.settings
        self._directory = directory or InstanceDirectory(settings.host)
        self._transport_factory = transport_factory or WebSocketTransport
        self._correlator = RequestCorrelator(self._transmit, default_timeout_ms=settings.request_timeout_ms)
        self._policy = LimitPolicy(context.estimator)
        self._transport: Transport | None = None
        self._port: int | None = None
        self._generation = 0
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._stopped = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def context(self) -> BridgeContext:
        return self._context

    @property
    def state(self) -> ConnectionState:
        return self._context.state

    @property
    def correlator(self) -> RequestCorrelator:
        return self._correlator

    @property
    def directory(self) -> InstanceDirectory:
        return self._directory

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> InstanceRecord | None:
        """Discover, connect and begin the keep-alive schedule."""

        self._stopped = False
        chosen = await self.rediscover()
        if self._keepalive_task is None or self._keepalive_task.done():
            self._keepalive_task = asyncio.get_running_loop().create_task(self._keepalive_loop())
        return chosen

    async def stop(self) -> None:
        self._stopped = True
        self._cancel_reconnect()
        if self._keepalive_task is not None:
            self._keepalive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._keepalive_task
            self._keepalive_task = None
        self._teardown()
        self._correlator.cancel_all()
        self._set_state(ConnectionState.DISCONNECTED)

    async def discover(self) -> list[InstanceRecord]:
        settings = self._context.settings
        instances = await self._directory.discover(
            settings.port_range_start, settings.port_range_end, settings.probe_timeout_ms
        )
        self._context.instances = list(instances)
        return instances

    async def rediscover(self) -> InstanceRecord | None:
        """Manual resume: reset the attempt counter, rediscover and connect."""

        self._context.backoff.reset()
        self._context.reconnect_exhausted = False
        self._cancel_reconnect()
        instances = await self.discover()
        chosen = select_instance(instances, self._context.selected_port)
        if chosen is None:
            LOGGER.info("No editor instances found")
            return None
        self.connect(chosen.port)
        return chosen

    def connect(self, port: int) -> None:
        """Open a connection to *port*, replacing any existing connection."""

        if (
            self._transport is not None
            and self._port == port
            and self.state in (ConnectionState.OPEN, ConnectionState.CONNECTING)
        ):
            return
        self._cancel_reconnect()
        self._teardown()

        self._generation += 1
        generation = self._generation
        self._port = port
        self._set_state(ConnectionState.CONNECTING)
        transport = self._transport_factory(
            host_url(self._context.settings.host, port),
            loop=asyncio.get_running_loop(),
            on_open=functools.partial(self._handle_open, generation),
            on_message=functools.partial(self._handle_message, generation),
            on_close=functools.partial(self._handle_close, generation),
            on_error=functools.partial(self._handle_error, generation),
        )
        self._transport = transport
        try:
            transport.open()
        except Exception as exc:
            LOGGER.warning("Failed to open connection to port %d: %s", port, exc)
            self._handle_disconnect(generation)

    # ------------------------------------------------------------------
    # Outbound operations
    # ------------------------------------------------------------------
    def send(self, message: Mapping[str, Any]) -> None:
        self._transmit(message)

    async def request(self, payload: Mapping[str, Any], timeout_ms: int | None = None) -> dict[str, Any]:
        return await self._correlator.send(payload, timeout_ms)

    def request_chips(self) -> None:
        self._transmit({"type": MessageType.GET_CHIPS.value})

    def clear_host_chips(self) -> None:
        self._transmit({"type": MessageType.CLEAR_CHIPS.value})
        self._context.host_chips = []
        self._persist_chip_snapshot()

    def remove_host_chip(self, chip_id: str) -> None:
        self._transmit({"type": MessageType.REMOVE_CHIP.value, "chipId": chip_id})

    def send_ai_response(self, text: str, *, is_code: bool = False, site: str = "unknown") -> None:
        payload = {
            "type": MessageType.AI_RESPONSE.value,
            "text": text,
            "isCode": is_code,
            "site": site,
            "timestamp": int(time.time() * 1000),
        }
        self._transmit(payload)
        self._context.store.set({"lastAIResponse": {key: value for key, value in payload.items() if key != "type"}})

    def status(self) -> dict[str, Any]:
        context = self._context
        instance = context.connected_instance
        return {
            "connected": context.state is ConnectionState.OPEN,
            "state": context.state.value,
            "selected_port": context.selected_port,
            "connected_instance": instance.to_payload() if instance else None,
            "reconnect_attempts": context.backoff.attempts,
            "reconnect_exhausted": context.reconnect_exhausted,
        }

    async def keepalive_tick(self) -> None:
        """Record liveness and reconnect when the link is down."""

        context = self._context
        context.store.set({"keepAlive": int(time.time() * 1000)})
        if context.state is not ConnectionState.DISCONNECTED:
            return
        if context.reconnect_exhausted or self._reconnect_handle is not None or self._stopped:
            return
        if context.selected_port is not None:
            self.connect(context.selected_port)
            return
        instances = await self.discover()
        chosen = select_instance(instances, context.selected_port)
        if chosen is not None:
            self.connect(chosen.port)

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------
    def _handle_open(self, generation: int) -> None:
        if generation != self._generation:
            return
        context = self._context
        context.backoff.reset()
        context.reconnect_exhausted = False
        context.selected_port = self._port
        context.store.set({"selectedPort": self._port})
        self._set_state(ConnectionState.OPEN)
        LOGGER.info("Connected to editor on port %s", self._port)
        try:
            self.request_chips()
        except TransportUnavailable as exc:
            LOGGER.debug("Chip refresh after connect failed: %s", exc)

    def _handle_message(self, generation: int, raw: str) -> None:
        if generation != self._generation:
            return
        try:
            message = decode_message(raw)
        except MalformedMessage as exc:
            LOGGER.debug("Dropping malformed message: %s", exc)
            return
        try:
            self._dispatch(message)
        except Exception:
            LOGGER.warning("Failed to handle %s message", message.get("type"), exc_info=True)

    def _handle_close(self, generation: int) -> None:
        self._handle_disconnect(generation)

    def _handle_error(self, generation: int, exc: BaseException) -> None:
        if generation != self._generation:
            return
        LOGGER.debug("Transport error on port %s: %s", self._port, exc)
        self._handle_disconnect(generation)

    def _handle_disconnect(self, generation: int) -> None:
        if generation != self._generation:
            return
        # Later events from the same transport become stale.
        self._generation += 1
        transport, self._transport = self._transport, None
        _close_quietly(transport)
        self._context.connected_instance = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def _dispatch(self, message: dict[str, Any]) -> None:
        if "requestId" in message and self._correlator.handle_response(message):
            return
        kind = message_type(message)
        if kind in (MessageType.PONG, MessageType.INSTANCE_INFO):
            instance = InstanceRecord.from_message(message, fallback_port=self._port or 0)
            self._context.connected_instance = instance
            telemetry_emit("bridge.instance_info", instance.to_payload())
        elif kind is MessageType.CHIPS_LIST:
            self._context.host_chips = parse_chip_records(message.get("chips"))
            self._persist_chip_snapshot()
            telemetry_emit("bridge.chips_list", {"count": len(self._context.host_chips)})
        elif kind is MessageType.CHIPS_INSERT:
            self._insert_host_chips(parse_chip_records(message.get("chips")))
        elif kind is None:
            LOGGER.debug("Dropping message with unknown type %r", message.get("type"))
        else:
            LOGGER.debug("Ignoring unexpected %s message", kind.value)

    def _insert_host_chips(self, chips: list[ChipRecord]) -> None:
        """Run pushed chips through the limit policy before they reach the focused buffer.

        Only an Insert decision with ``auto_insert`` on lands as a placeholder.
        Every other outcome is published on ``bridge.chips_insert`` for the UI
        to confirm, carrying a ``ChunkQueue`` when the content must be split.
        """

        text = format_chips_for_insert(chips)
        if not text:
            return
        context = self._context
        settings = context.settings
        decision = self._policy.apply(
            text,
            settings.custom_limit,
            settings.limit_mode,
            settings.model,
            overlap_tokens=settings.chunk_overlap_tokens,
        )
        payload: dict[str, Any] = {
            "count": len(chips),
            "action": decision.action,
            "tokens": decision.tokens,
            "limit": decision.limit,
            "inserted": False,
            "chip_id": None,
        }
        if isinstance(decision, ChunkDecision):
            payload["queue"] = ChunkQueue(decision.chunks)
        else:
            payload["text"] = decision.text

        buffer = context.focused_buffer
        if isinstance(decision, InsertDecision):
            payload["truncated"] = decision.was_truncated
            if settings.auto_insert and buffer is not None:
                if len(chips) == 1:
                    kind, label = ChipKind.coerce(chips[0].type), chips[0].label
                else:
                    kind, label = ChipKind.FILES, None
                payload["chip_id"] = context.registry.insert(kind, label, decision.tokens, buffer, decision.text)
                payload["inserted"] = True
        if not payload["inserted"]:
            LOGGER.info("Host pushed %d chip(s) (%s); awaiting confirmation", len(chips), decision.action)
        telemetry_emit("bridge.chips_insert", payload)

    def _persist_chip_snapshot(self) -> None:
        chips = self._context.host_chips
        estimator = self._context.estimator
        self._context.store.set(
            {
                "contextChips": [chip.to_payload() for chip in chips],
                "totalChipTokens": sum(estimator.estimate(chip.text) for chip in chips),
                "chipCount": len(chips),
            }
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _transmit(self, message: Mapping[str, Any]) -> None:
        transport = self._transport
        if transport is None or self._context.state is not ConnectionState.OPEN:
            raise TransportUnavailable("Bridge is not connected")
        transport.send(message)

    def _set_state(self, state: ConnectionState) -> None:
        if self._context.state is state:
            return
        self._context.state = state
        telemetry_emit("bridge.state_changed", {"state": state.value, "port": self._port})

    def _schedule_reconnect(self) -> None:
        if self._stopped or self._reconnect_handle is not None or self._port is None:
            return
        context = self._context
        delay = context.backoff.next_delay()
        if delay is None:
            context.reconnect_exhausted = True
            LOGGER.warning(
                "Giving up on port %s after %d reconnect attempts", self._port, context.backoff.attempts
            )
            telemetry_emit(
                "bridge.reconnect_exhausted", {"port": self._port, "attempts": context.backoff.attempts}
            )
            return
        attempt = context.backoff.attempts
        LOGGER.info("Reconnecting to port %s in %.1fs (attempt %d)", self._port, delay, attempt)
        telemetry_emit("bridge.reconnect_scheduled", {"port": self._port, "attempt": attempt, "delay": delay})
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect_now, self._port)

    def _reconnect_now(self, port: int) -> None:
        self._reconnect_handle = None
        if self._stopped or self._context.state is not ConnectionState.DISCONNECTED:
            return
        self.connect(port)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _teardown(self) -> None:
        transport, self._transport = self._transport, None
        self._generation += 1
        _close_quietly(transport)
        self._context.connected_instance = None

    async def _keepalive_loop(self) -> None:
        interval = max(0.01, float(self._context.settings.keepalive_interval_seconds))
        while not self._stopped:
            await asyncio.sleep(interval)
            try:
                await self.keepalive_tick()
            except Exception:
                LOGGER.warning("Keep-alive tick failed", exc_info=True)


def _close_quietly(transport: Transport | None) -> None:
    if transport is None:
        return
    try:
        transport.close()
    except Exception:
        LOGGER.debug("Error while closing transport", exc_info=True)
