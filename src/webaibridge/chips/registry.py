"""Placeholder lifecycle for externally sourced content inside text buffers."""

from __future__ import annotations

import itertools
import logging
import re
import secrets
import time
import weakref
from dataclasses import dataclass, field
from enum import Enum

from ..budget.estimator import TokenEstimator
from ..services import telemetry
from .buffers import TextBuffer

__all__ = ["ChipKind", "ChipRegistry", "ChipState", "Placeholder", "format_placeholder"]

LOGGER = logging.getLogger(__name__)

PLACEHOLDER_PREFIX = "[[WAB::"
PLACEHOLDER_SUFFIX = "]]"
_LABEL_STRIP = re.compile(r"[\[\]:]+")
_WHITESPACE = re.compile(r"\s+")


class ChipKind(str, Enum):
    SELECTION = "selection"
    FILE = "file"
    FILES = "files"
    PROBLEMS = "problems"
    FILE_TREE = "file-tree"
    DIFF = "diff"
    TERMINAL = "terminal"
    MENTION = "mention"

    @classmethod
    def coerce(cls, value: "ChipKind | str") -> "ChipKind":
        if isinstance(value, ChipKind):
            return value
        token = str(value or "").strip().lower().replace("_", "-")
        for member in cls:
            if member.value == token:
                return member
        return cls.MENTION


class ChipState(str, Enum):
    INSERTED = "inserted"
    RESOLVED = "resolved"
    REMOVED = "removed"
    SYNCED_OUT = "synced_out"


@dataclass(slots=True)
class Placeholder:
    """A tracked placeholder; content lives in the owning buffer's content map."""

    id: str
    text: str
    label: str
    kind: ChipKind
    tokens: int | None = None
    state: ChipState = ChipState.INSERTED
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True)
class _BufferChips:
    placeholders: dict[str, Placeholder] = field(default_factory=dict)
    contents: dict[str, str | None] = field(default_factory=dict)
    counters: dict[str, int] = field(default_factory=dict)


def format_placeholder(tag: str, label: str) -> str:
    return f"{PLACEHOLDER_PREFIX}{tag}::{label}{PLACEHOLDER_SUFFIX}"


def _sanitize_label(label: str | None) -> str:
    cleaned = _LABEL_STRIP.sub("", label or "").strip()
    return _WHITESPACE.sub("-", cleaned)


class ChipRegistry:
    """Tracks placeholders per buffer and expands them back into full content.

    Buffers are held weakly: once a buffer is garbage collected its chips
    disappear with it. Every tracked placeholder owns exactly one entry in the
    buffer's content map, ``None`` until the content is resolved.
    """

    def __init__(self, estimator: TokenEstimator | None = None, *, tag: str | None = None) -> None:
        self._estimator = estimator or TokenEstimator()
        self._tag = tag or secrets.token_hex(3)
        self._buffers: "weakref.WeakKeyDictionary[TextBuffer, _BufferChips]" = weakref.WeakKeyDictionary()
        self._index: dict[str, weakref.ReferenceType[TextBuffer]] = {}
        self._ids = itertools.count(1)

    @property
    def tag(self) -> str:
        return self._tag

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def insert(
        self,
        kind: ChipKind | str,
        label: str | None,
        tokens: int | None,
        buffer: TextBuffer,
        content: str | None = None,
        *,
        span: tuple[int, int] | None = None,
        separator: str = "",
    ) -> str:
        """Insert a placeholder into *buffer* and start tracking it.

        The placeholder replaces *span* (a mention trigger, for example) or is
        inserted at the cursor. Returns the placeholder id.
        """

        kind = ChipKind.coerce(kind)
        chips = self._buffers.get(buffer)
        if chips is None:
            chips = _BufferChips()
            self._buffers[buffer] = chips
        self._prune_index()

        base = self._base_label(kind, label, chips)
        text, final_label = self._unique_placeholder(base, chips, buffer.read())
        if content is not None and tokens is None:
            tokens = self._estimator.estimate(content)

        chip_id = f"chip-{next(self._ids)}"
        buffer.insert(text + separator, span)
        chips.placeholders[chip_id] = Placeholder(
            id=chip_id,
            text=text,
            label=final_label,
            kind=kind,
            tokens=tokens,
            state=ChipState.RESOLVED if content is not None else ChipState.INSERTED,
        )
        chips.contents[text] = content
        self._index[chip_id] = weakref.ref(buffer)
        LOGGER.debug("Inserted chip %s (%s) as %s", chip_id, kind.value, text)
        return chip_id

    def resolve_content(self, chip_id: str, content: str) -> bool:
        """Attach asynchronously fetched *content*; ``False`` when the chip is gone."""

        located = self._locate(chip_id)
        if located is None:
            LOGGER.debug("Ignoring content for untracked chip %s", chip_id)
            return False
        chips, placeholder = located
        chips.contents[placeholder.text] = content
        placeholder.tokens = self._estimator.estimate(content)
        placeholder.state = ChipState.RESOLVED
        return True

    def remove(self, chip_id: str, replacement: str = "") -> bool:
        """Replace every literal occurrence of the chip in its buffer with *replacement*."""

        buffer = self._buffer_for(chip_id)
        located = self._locate(chip_id)
        if buffer is None or located is None:
            return False
        chips, placeholder = located
        buffer.replace_all(placeholder.text, replacement)
        self._drop(chips, placeholder, ChipState.REMOVED)
        return True

    def sync(self, buffer: TextBuffer) -> list[str]:
        """Stop tracking placeholders the user deleted from *buffer*.

        Never edits the buffer. Returns the ids that were dropped.
        """

        chips = self._buffers.get(buffer)
        if chips is None or not chips.placeholders:
            return []
        text = buffer.read()
        gone = [p for p in chips.placeholders.values() if p.text not in text]
        for placeholder in gone:
            self._drop(chips, placeholder, ChipState.SYNCED_OUT)
        removed = [placeholder.id for placeholder in gone]
        if removed:
            telemetry.emit("chips.synced", {"removed": removed, "remaining": len(chips.placeholders)})
        return removed

    def expand(self, buffer: TextBuffer) -> str:
        """Replace resolved placeholders with their content and clear tracking.

        Placeholders whose content is still unresolved stay in the text as-is.
        """

        text = buffer.read()
        chips = self._buffers.pop(buffer, None)
        if chips is None or not chips.placeholders:
            return text

        resolved: dict[str, str] = {}
        for placeholder_text, content in chips.contents.items():
            if content is None:
                if placeholder_text in text:
                    LOGGER.warning("Leaving unresolved chip %s unexpanded", placeholder_text)
                continue
            resolved[placeholder_text] = content

        expanded = text
        if resolved:
            pattern = re.compile(
                "|".join(re.escape(key) for key in sorted(resolved, key=len, reverse=True))
            )
            expanded = pattern.sub(lambda match: resolved[match.group(0)], text)
            if expanded != text:
                buffer.write(expanded)

        for chip_id in list(chips.placeholders):
            self._index.pop(chip_id, None)
        telemetry.emit(
            "chips.expanded",
            {"count": len(chips.placeholders), "resolved": len(resolved), "length": len(expanded)},
        )
        return expanded

    def clear(self, buffer: TextBuffer) -> int:
        """Remove every placeholder from *buffer* and reset its counters."""

        chips = self._buffers.pop(buffer, None)
        if chips is None:
            return 0
        count = len(chips.placeholders)
        for placeholder in list(chips.placeholders.values()):
            buffer.replace_all(placeholder.text, "")
            placeholder.state = ChipState.REMOVED
            self._index.pop(placeholder.id, None)
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, chip_id: str) -> Placeholder | None:
        located = self._locate(chip_id)
        return located[1] if located else None

    def content_for(self, chip_id: str) -> str | None:
        located = self._locate(chip_id)
        if located is None:
            return None
        chips, placeholder = located
        return chips.contents.get(placeholder.text)

    def chips(self, buffer: TextBuffer) -> list[Placeholder]:
        chips = self._buffers.get(buffer)
        return list(chips.placeholders.values()) if chips else []

    def has_chips(self, buffer: TextBuffer) -> bool:
        chips = self._buffers.get(buffer)
        return bool(chips and chips.placeholders)

    def total_tokens(self, buffer: TextBuffer) -> int:
        return sum(p.tokens or 0 for p in self.chips(buffer))

    def contents(self, buffer: TextBuffer) -> dict[str, str | None]:
        chips = self._buffers.get(buffer)
        return dict(chips.contents) if chips else {}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _base_label(self, kind: ChipKind, label: str | None, chips: _BufferChips) -> str:
        cleaned = _sanitize_label(label)
        if cleaned and kind is not ChipKind.SELECTION:
            return cleaned
        counter = chips.counters.get(kind.value, 0) + 1
        chips.counters[kind.value] = counter
        if cleaned:
            return cleaned
        if kind is ChipKind.SELECTION:
            return f"selection-{counter}"
        return kind.value if counter == 1 else f"{kind.value}-{counter}"

    def _unique_placeholder(self, base: str, chips: _BufferChips, text: str) -> tuple[str, str]:
        tracked = set(chips.contents)
        label = base
        for suffix in itertools.count(2):
            candidate = format_placeholder(self._tag, label)
            if candidate not in tracked and candidate not in text:
                return candidate, label
            label = f"{base}-{suffix}"
        raise AssertionError("unreachable")  # pragma: no cover

    def _buffer_for(self, chip_id: str) -> TextBuffer | None:
        ref = self._index.get(chip_id)
        if ref is None:
            return None
        buffer = ref()
        if buffer is None:
            self._index.pop(chip_id, None)
        return buffer

    def _locate(self, chip_id: str) -> tuple[_BufferChips, Placeholder] | None:
        buffer = self._buffer_for(chip_id)
        if buffer is None:
            return None
        chips = self._buffers.get(buffer)
        if chips is None or chip_id not in chips.placeholders:
            self._index.pop(chip_id, None)
            return None
        return chips, chips.placeholders[chip_id]

    def _drop(self, chips: _BufferChips, placeholder: Placeholder, state: ChipState) -> None:
        chips.placeholders.pop(placeholder.id, None)
        chips.contents.pop(placeholder.text, None)
        self._index.pop(placeholder.id, None)
        placeholder.state = state

    def _prune_index(self) -> None:
        dead = [chip_id for chip_id, ref in self._index.items() if ref() is None]
        for chip_id in dead:
            del self._index[chip_id]
