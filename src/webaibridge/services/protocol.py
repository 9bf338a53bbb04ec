"""Wire codec for the flat tagged JSON records exchanged with editor hosts."""

from __future__ import annotations

import json
from typing import Any, Mapping

from .bridge_types import MalformedMessage, MessageType

__all__ = ["decode_message", "encode_message", "message_type"]

_KNOWN_TYPES = frozenset(member.value for member in MessageType)


def encode_message(message: Mapping[str, Any]) -> str:
    kind = message.get("type")
    if isinstance(kind, MessageType):
        message = {**message, "type": kind.value}
    elif not isinstance(kind, str) or not kind:
        raise MalformedMessage("outbound message is missing a type")
    return json.dumps(dict(message), separators=(",", ":"))


def decode_message(raw: str | bytes | bytearray) -> dict[str, Any]:
    """Parse one inbound frame into a record with a string ``type`` field."""

    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessage(f"frame is not valid UTF-8: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedMessage(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedMessage("frame is not a JSON object")
    kind = payload.get("type")
    if not isinstance(kind, str) or not kind:
        raise MalformedMessage("frame is missing a type field")
    return payload


def message_type(message: Mapping[str, Any]) -> MessageType | None:
    """Return the known message type, or ``None`` for unknown tags."""

    kind = message.get("type")
    if kind in _KNOWN_TYPES:
        return MessageType(kind)
    return None
