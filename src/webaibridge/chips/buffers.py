"""Text buffer abstraction consumed by the chip registry."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

__all__ = ["TextBuffer", "StringBuffer"]


@runtime_checkable
class TextBuffer(Protocol):
    """Minimal interface over an editable chat input.

    Implementations wrap one host buffer technology (a textarea, a
    contenteditable node, an editor widget). The registry never touches the
    underlying widget directly.
    """

    def read(self) -> str:
        ...

    def write(self, text: str) -> None:
        ...

    def replace_all(self, literal: str, replacement: str) -> None:
        ...

    def insert(self, text: str, span: tuple[int, int] | None = None) -> None:
        """Replace *span* with *text*, or insert at the cursor when no span is given."""
        ...


class StringBuffer:
    """In-memory :class:`TextBuffer` with a cursor, used by tests and headless callers."""

    def __init__(self, text: str = "", *, cursor: int | None = None) -> None:
        self._text = text
        self._cursor = len(text) if cursor is None else max(0, min(cursor, len(text)))

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"StringBuffer({self._text!r}, cursor={self._cursor})"

    @property
    def cursor(self) -> int:
        return self._cursor

    def move_cursor(self, position: int) -> None:
        self._cursor = max(0, min(position, len(self._text)))

    def read(self) -> str:
        return self._text

    def write(self, text: str) -> None:
        self._text = text
        self._cursor = len(text)

    def replace_all(self, literal: str, replacement: str) -> None:
        if not literal or literal not in self._text:
            return
        before_cursor = self._text[: self._cursor]
        shift = before_cursor.count(literal) * (len(replacement) - len(literal))
        self._text = self._text.replace(literal, replacement)
        self._cursor = max(0, min(self._cursor + shift, len(self._text)))

    def insert(self, text: str, span: tuple[int, int] | None = None) -> None:
        if span is None:
            start = end = self._cursor
        else:
            start, end = sorted(span)
            start = max(0, min(start, len(self._text)))
            end = max(start, min(end, len(self._text)))
        self._text = self._text[:start] + text + self._text[end:]
        self._cursor = start + len(text)
