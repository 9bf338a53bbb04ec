"""Service layer helpers (bridge, discovery, settings, etc.)."""

from .bridge_types import (
    BridgeError,
    ConnectionState,
    FileEntry,
    InstanceRecord,
    MalformedMessage,
    MessageType,
    RequestTimeout,
    TransportUnavailable,
)

__all__ = [
    "BridgeError",
    "ConnectionState",
    "FileEntry",
    "InstanceRecord",
    "MalformedMessage",
    "MessageType",
    "RequestTimeout",
    "TransportUnavailable",
]
