"""Context chips: placeholders for external content inside chat buffers."""

from .buffers import StringBuffer, TextBuffer
from .formatting import ChipRecord, format_chips_for_insert, parse_chip_records
from .registry import ChipKind, ChipRegistry, ChipState, Placeholder

__all__ = [
    "ChipKind",
    "ChipRecord",
    "ChipRegistry",
    "ChipState",
    "Placeholder",
    "StringBuffer",
    "TextBuffer",
    "format_chips_for_insert",
    "parse_chip_records",
]
