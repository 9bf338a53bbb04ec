"""Parallel port sweep that locates running editor hosts."""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Awaitable, Callable, Sequence

import websocket

from .bridge_types import InstanceRecord, MalformedMessage, MessageType
from .protocol import decode_message, encode_message
from .transport import host_url

__all__ = ["InstanceDirectory", "ProbeFunc", "probe_port", "select_instance"]

LOGGER = logging.getLogger(__name__)

ProbeFunc = Callable[[str, int, float], Awaitable["InstanceRecord | None"]]

MAX_CONCURRENT_PROBES = 32


def probe_port(host: str, port: int, timeout: float) -> InstanceRecord | None:
    """Blocking PING/PONG exchange with a single port.

    Returns ``None`` when nothing answers with a PONG before *timeout*.
    """

    deadline = time.monotonic() + timeout
    try:
        conn = websocket.create_connection(host_url(host, port), timeout=timeout)
    except (OSError, websocket.WebSocketException) as exc:
        LOGGER.debug("Probe %s:%s failed to connect: %s", host, port, exc)
        return None
    try:
        conn.send(encode_message({"type": MessageType.PING.value}))
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            conn.settimeout(remaining)
            try:
                message = decode_message(conn.recv())
            except MalformedMessage:
                continue
            if message.get("type") == MessageType.PONG.value:
                return InstanceRecord.from_message(message, fallback_port=port)
    except (OSError, websocket.WebSocketException) as exc:
        LOGGER.debug("Probe %s:%s failed: %s", host, port, exc)
        return None
    finally:
        try:
            conn.close()
        except (OSError, websocket.WebSocketException):
            LOGGER.debug("Probe %s:%s close failed", host, port, exc_info=True)


def select_instance(
    instances: Sequence[InstanceRecord], remembered_port: int | None = None
) -> InstanceRecord | None:
    """Prefer the remembered port when it is still live, else the first instance."""

    if not instances:
        return None
    if remembered_port is not None:
        for instance in instances:
            if instance.port == remembered_port:
                return instance
    return instances[0]


class InstanceDirectory:
    """Runs discovery sweeps; performs no retries of its own."""

    def __init__(
        self,
        host: str = "localhost",
        *,
        probe: ProbeFunc | None = None,
        max_concurrency: int = MAX_CONCURRENT_PROBES,
    ) -> None:
        self._host = host
        self._probe = probe
        self._max_concurrency = max(1, int(max_concurrency))
        self._last: tuple[InstanceRecord, ...] = ()

    @property
    def host(self) -> str:
        return self._host

    @property
    def last_results(self) -> tuple[InstanceRecord, ...]:
        return self._last

    async def discover(
        self,
        port_range_start: int,
        port_range_end: int,
        per_port_timeout_ms: int,
    ) -> list[InstanceRecord]:
        """Probe every port in the inclusive range concurrently.

        Ports that error or stay silent are simply absent from the result,
        which is ordered by port. An empty list means no host is running.
        """

        low, high = sorted((int(port_range_start), int(port_range_end)))
        ports = list(range(low, high + 1))
        timeout = max(0.001, per_port_timeout_ms / 1000.0)
        width = min(len(ports), self._max_concurrency)
        slots = asyncio.Semaphore(width)
        executor: ThreadPoolExecutor | None = None
        probe = self._probe
        if probe is None:
            executor = ThreadPoolExecutor(max_workers=width, thread_name_prefix="webaibridge-probe")
            probe = self._threaded_probe(executor)
        try:
            outcomes = await asyncio.gather(
                *(self._bounded(probe, port, timeout, slots) for port in ports)
            )
        finally:
            if executor is not None:
                executor.shutdown(wait=False)

        instances = sorted((item for item in outcomes if item is not None), key=lambda item: item.port)
        self._last = tuple(instances)
        LOGGER.info(
            "Discovered %d instance(s) on %s:%d-%d: %s",
            len(instances),
            self._host,
            low,
            high,
            [instance.port for instance in instances],
        )
        return instances

    async def _bounded(
        self, probe: ProbeFunc, port: int, timeout: float, slots: asyncio.Semaphore
    ) -> InstanceRecord | None:
        # The per-port deadline starts once a slot is free.
        async with slots:
            try:
                return await asyncio.wait_for(probe(self._host, port, timeout), timeout)
            except asyncio.TimeoutError:
                LOGGER.debug("Probe of port %d timed out", port)
            except Exception as exc:
                LOGGER.debug("Probe of port %d failed: %s", port, exc)
        return None

    def _threaded_probe(self, executor: ThreadPoolExecutor) -> ProbeFunc:
        async def _probe(host: str, port: int, timeout: float) -> InstanceRecord | None:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(executor, probe_port, host, port, timeout)

        return _probe
