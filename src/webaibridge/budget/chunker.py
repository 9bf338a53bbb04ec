"""Boundary-aware splitting of oversized text into limit-respecting parts."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, Sequence

from .estimator import estimate_tokens

__all__ = ["Chunk", "ChunkQueue", "TextChunker", "chunk_text", "HEADER_RESERVE_TOKENS"]

LOGGER = logging.getLogger(__name__)

HEADER_RESERVE_TOKENS = 20
_SHRINK_FACTOR = 0.9
_MIN_SEARCH_WINDOW = 64
_SEARCH_WINDOW_RATIO = 0.1
_SENTENCE_END = re.compile(r"[.!?][\"')\]]?(?=\s)")

TokenCounter = Callable[[str], int]


@dataclass(frozen=True, slots=True)
class Chunk:
    """One ordered part of a split text."""

    text: str
    tokens: int
    part_number: int
    total_parts: int

    def header(self) -> str:
        return f"[Part {self.part_number}/{self.total_parts}]\n\n"


class TextChunker:
    """Splits text at natural boundaries so every part fits a token budget."""

    def __init__(
        self,
        token_counter: TokenCounter | None = None,
        *,
        header_reserve: int = HEADER_RESERVE_TOKENS,
    ) -> None:
        self._count = token_counter or estimate_tokens
        self._header_reserve = max(0, int(header_reserve))

    def chunk(self, text: str, max_tokens: int, overlap_tokens: int = 0) -> list[Chunk]:
        if max_tokens < 1:
            raise ValueError("max_tokens must be a positive integer")
        total = self._count(text)
        if total <= max_tokens:
            return [Chunk(text=text, tokens=total, part_number=1, total_parts=1)]

        budget = self._effective_budget(max_tokens)
        overlap_tokens = max(0, int(overlap_tokens))
        parts: list[Chunk] = []
        remaining = text
        while remaining:
            remaining_tokens = self._count(remaining)
            if remaining_tokens <= budget:
                parts.append(Chunk(remaining, remaining_tokens, len(parts) + 1, 0))
                break

            split = self._fit(remaining, self._initial_split(remaining, remaining_tokens, budget), budget)
            piece = remaining[:split]
            parts.append(Chunk(piece, self._count(piece), len(parts) + 1, 0))
            rest = remaining[split:]
            carry = self._overlap_slice(piece, overlap_tokens) if rest else ""
            remaining = carry + rest

        total_parts = len(parts)
        LOGGER.debug("Split %d tokens into %d parts (budget=%d)", total, total_parts, budget)
        return [replace(part, total_parts=total_parts) for part in parts]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _effective_budget(self, max_tokens: int) -> int:
        reserve = min(self._header_reserve, max_tokens // 4)
        return max(1, max_tokens - reserve)

    def _initial_split(self, text: str, tokens: int, budget: int) -> int:
        chars_per_token = len(text) / max(1, tokens)
        target = int(budget * chars_per_token)
        target = min(max(1, target), len(text) - 1) if len(text) > 1 else 1
        return find_boundary(text, target)

    def _fit(self, text: str, split: int, budget: int) -> int:
        split = max(1, min(split, len(text)))
        while split > 1 and self._count(text[:split]) > budget:
            shrunk = max(1, int(split * _SHRINK_FACTOR))
            newline = text.rfind("\n", 0, shrunk)
            split = newline + 1 if newline > 0 else shrunk
        return split

    def _overlap_slice(self, piece: str, overlap_tokens: int) -> str:
        if overlap_tokens <= 0 or len(piece) < 2:
            return ""
        piece_tokens = max(1, self._count(piece))
        chars = int(len(piece) * min(1.0, overlap_tokens / piece_tokens))
        chars = min(chars, len(piece) // 2)
        return piece[-chars:] if chars > 0 else ""


def find_boundary(text: str, target: int) -> int:
    """Return the best split offset at or before *target*.

    Searches a bounded window for a paragraph break, then a line break, then
    a sentence end, then whitespace. Falls back to *target* itself.
    """

    window = max(_MIN_SEARCH_WINDOW, int(target * _SEARCH_WINDOW_RATIO))
    low = max(1, target - window)
    segment = text[low:target]
    if not segment:
        return target

    paragraph = segment.rfind("\n\n")
    if paragraph != -1:
        return low + paragraph + 2
    line = segment.rfind("\n")
    if line != -1:
        return low + line + 1
    sentences = list(_SENTENCE_END.finditer(segment))
    if sentences:
        return low + sentences[-1].end() + 1
    for offset in range(len(segment) - 1, -1, -1):
        if segment[offset].isspace():
            return low + offset + 1
    return target


def chunk_text(text: str, max_tokens: int, overlap_tokens: int = 0) -> list[Chunk]:
    """Split *text* with the default estimator."""

    return TextChunker().chunk(text, max_tokens, overlap_tokens)


class ChunkQueue:
    """Cursor over chunks that are inserted one message at a time."""

    def __init__(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            raise ValueError("ChunkQueue requires at least one chunk")
        self._chunks = tuple(chunks)
        self._index = 0
        self._inserted: set[int] = set()

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> Chunk:
        return self._chunks[self._index]

    @property
    def exhausted(self) -> bool:
        return len(self._inserted) == len(self._chunks)

    def advance(self) -> Chunk | None:
        if self._index >= len(self._chunks) - 1:
            return None
        self._index += 1
        return self.current

    def previous(self) -> Chunk | None:
        if self._index == 0:
            return None
        self._index -= 1
        return self.current

    def take(self) -> str:
        """Return the current part with its header and move to the next part."""

        chunk = self.current
        self._inserted.add(self._index)
        self.advance()
        return self.formatted(chunk)

    @staticmethod
    def formatted(chunk: Chunk) -> str:
        return chunk.header() + chunk.text
