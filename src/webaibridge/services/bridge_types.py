"""Type definitions shared by the bridge, discovery and correlation modules."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Protocol

__all__ = [
    "BridgeError",
    "ConnectionState",
    "FileEntry",
    "InstanceRecord",
    "MalformedMessage",
    "MessageType",
    "PendingRequest",
    "RequestTimeout",
    "Transport",
    "TransportFactory",
    "TransportUnavailable",
]


class MessageType(str, Enum):
    PING = "PING"
    PONG = "PONG"
    GET_CHIPS = "GET_CHIPS"
    CHIPS_LIST = "CHIPS_LIST"
    CHIPS_INSERT = "CHIPS_INSERT"
    CLEAR_CHIPS = "CLEAR_CHIPS"
    REMOVE_CHIP = "REMOVE_CHIP"
    GET_CONTEXT = "GET_CONTEXT"
    CONTEXT_RESPONSE = "CONTEXT_RESPONSE"
    CONTEXT_RESPONSE_STREAM = "CONTEXT_RESPONSE_STREAM"
    GET_CONTEXT_INFO = "GET_CONTEXT_INFO"
    CONTEXT_INFO_RESPONSE = "CONTEXT_INFO_RESPONSE"
    GET_FILE_LIST = "GET_FILE_LIST"
    FILE_LIST_RESPONSE = "FILE_LIST_RESPONSE"
    AI_RESPONSE = "AI_RESPONSE"
    INSTANCE_INFO = "INSTANCE_INFO"


class ConnectionState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    OPEN = "Open"


@dataclass(frozen=True, slots=True)
class InstanceRecord:
    """One running editor host, identified by the port it listens on."""

    port: int
    workspace_name: str = ""
    workspace_path: str = ""

    @classmethod
    def from_message(cls, message: Mapping[str, Any], *, fallback_port: int) -> "InstanceRecord":
        port = message.get("port")
        return cls(
            port=port if isinstance(port, int) and not isinstance(port, bool) else fallback_port,
            workspace_name=str(message.get("workspaceName") or ""),
            workspace_path=str(message.get("workspacePath") or ""),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "workspaceName": self.workspace_name,
            "workspacePath": self.workspace_path,
        }


@dataclass(slots=True)
class PendingRequest:
    """An in-flight request awaiting exactly one outcome."""

    request_id: str
    future: asyncio.Future[Any]
    created_at: float = field(default_factory=time.time)
    timer: asyncio.TimerHandle | None = None
    stream_parts: list[str] = field(default_factory=list)
    stream_size: int = 0


@dataclass(frozen=True, slots=True)
class FileEntry:
    """A workspace file offered to the file picker."""

    path: str
    label: str
    language_id: str = "plaintext"

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "FileEntry":
        path = payload.get("path")
        if not isinstance(path, str) or not path:
            raise MalformedMessage("file entry requires a path")
        return cls(
            path=path,
            label=str(payload.get("label") or path.rsplit("/", 1)[-1]),
            language_id=str(payload.get("languageId") or "plaintext"),
        )

    def to_payload(self) -> dict[str, Any]:
        return {"path": self.path, "label": self.label, "languageId": self.language_id}


class BridgeError(RuntimeError):
    """Base class for bridge failures surfaced to callers."""


class TransportUnavailable(BridgeError):
    """Raised when a send is attempted without an open connection."""


class RequestTimeout(BridgeError):
    """Raised when no matching response arrives before the deadline."""

    def __init__(self, request_id: str, timeout: float) -> None:
        super().__init__(f"Request {request_id} timed out after {timeout:.3f}s")
        self.request_id = request_id
        self.timeout = timeout


class MalformedMessage(ValueError):
    """Raised by the codec for payloads that are not valid tagged records."""


class Transport(Protocol):
    """A single bidirectional message connection to an editor host."""

    def open(self) -> None:
        ...

    def send(self, message: Mapping[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...

    @property
    def is_open(self) -> bool:
        ...


TransportFactory = Callable[..., Transport]
