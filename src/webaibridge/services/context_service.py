"""Fetch editor context over the bridge and place it into chat buffers."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from ..budget.chunker import Chunk, ChunkQueue
from ..budget.limit_policy import ChunkDecision, LimitDecision, LimitMode, LimitPolicy, WarnDecision
from ..chips.buffers import TextBuffer
from ..chips.formatting import ChipRecord, format_chips_for_insert
from ..chips.registry import ChipKind, ChipRegistry
from .bridge import BridgeConnectionManager
from .bridge_types import BridgeError, FileEntry, MalformedMessage, MessageType

__all__ = ["ContextPayload", "ContextService", "InsertOutcome", "MentionQuery", "find_mention"]

LOGGER = logging.getLogger(__name__)

WarnHandler = Callable[[WarnDecision], bool]


@dataclass(frozen=True, slots=True)
class ContextPayload:
    text: str
    tokens: int
    label: str
    streamed: bool = False


@dataclass(frozen=True, slots=True)
class MentionQuery:
    """A trigger plus the word typed after it, ending at the cursor."""

    query: str
    span: tuple[int, int]


def find_mention(text: str, cursor: int, trigger: str = "@") -> MentionQuery | None:
    cursor = max(0, min(cursor, len(text)))
    pattern = re.compile(re.escape(trigger or "@") + r"(\w*)$")
    match = pattern.search(text[:cursor])
    if match is None:
        return None
    return MentionQuery(query=match.group(1), span=(match.start(), cursor))


@dataclass(slots=True)
class InsertOutcome:
    """Result of an insert attempt.

    ``chip_id`` is set when a placeholder landed in the buffer; ``queue`` is
    set when the content must be sent as several parts.
    """

    decision: LimitDecision
    chip_id: str | None = None
    queue: ChunkQueue | None = None

    @property
    def inserted(self) -> bool:
        return self.chip_id is not None


class ContextService:
    """Request/response flows layered over the bridge manager."""

    def __init__(self, manager: BridgeConnectionManager, *, policy: LimitPolicy | None = None) -> None:
        self._manager = manager
        self._context = manager.context
        self._policy = policy or LimitPolicy(self._context.estimator)

    @property
    def policy(self) -> LimitPolicy:
        return self._policy

    @property
    def registry(self) -> ChipRegistry:
        return self._context.registry

    def find_mention(self, text: str, cursor: int) -> MentionQuery | None:
        """Locate the mention being typed, using the configured trigger."""

        return find_mention(text, cursor, self._context.settings.mention_trigger)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------
    async def fetch_context(self, context_type: str, file_path: str | None = None) -> ContextPayload:
        payload: dict[str, Any] = {"type": MessageType.GET_CONTEXT.value, "contextType": context_type}
        if file_path:
            payload["filePath"] = file_path
        response = await self._manager.request(payload)
        text = response.get("text")
        if not isinstance(text, str):
            raise MalformedMessage(f"context response for {context_type!r} carried no text")
        tokens = response.get("tokens")
        if not isinstance(tokens, int) or isinstance(tokens, bool) or tokens < 0:
            tokens = self._context.estimator.estimate(text)
        label = response.get("label")
        return ContextPayload(
            text=text,
            tokens=tokens,
            label=label if isinstance(label, str) and label else context_type,
            streamed=bool(response.get("streamed")),
        )

    async def fetch_context_info(self) -> dict[str, dict[str, Any]]:
        """Token counts per context option without transferring the content."""

        response = await self._manager.request({"type": MessageType.GET_CONTEXT_INFO.value})
        info = response.get("contextInfo")
        if not isinstance(info, dict):
            return {}
        result: dict[str, dict[str, Any]] = {}
        for option, entry in info.items():
            if not isinstance(entry, dict):
                continue
            tokens = entry.get("tokens")
            result[str(option)] = {
                "tokens": tokens if isinstance(tokens, int) else 0,
                "label": str(entry.get("label") or option),
            }
        return result

    async def fetch_file_list(self) -> list[FileEntry]:
        response = await self._manager.request({"type": MessageType.GET_FILE_LIST.value})
        files = response.get("files")
        if not isinstance(files, list):
            return []
        entries: list[FileEntry] = []
        for item in files:
            if not isinstance(item, dict):
                continue
            try:
                entries.append(FileEntry.from_payload(item))
            except MalformedMessage:
                LOGGER.debug("Skipping invalid file entry %r", item)
        return entries

    # ------------------------------------------------------------------
    # Inserting
    # ------------------------------------------------------------------
    async def insert_context(
        self,
        buffer: TextBuffer,
        kind: ChipKind | str,
        context_type: str,
        label: str | None = None,
        *,
        file_path: str | None = None,
        span: tuple[int, int] | None = None,
        on_warn: WarnHandler | None = None,
    ) -> InsertOutcome:
        """Fetch context, apply the limit policy and place a chip.

        Fetch errors propagate before the buffer is touched. Oversized content
        in warn mode is only inserted when *on_warn* accepts it.
        """

        payload = await self.fetch_context(context_type, file_path)
        settings = self._context.settings
        decision = self._policy.apply(
            payload.text,
            settings.custom_limit,
            LimitMode.coerce(settings.limit_mode),
            settings.model,
            overlap_tokens=settings.chunk_overlap_tokens,
        )
        chip_label = label or payload.label

        if isinstance(decision, WarnDecision):
            if on_warn is None or not on_warn(decision):
                LOGGER.info(
                    "Content for %s exceeds the limit (%d > %d); awaiting confirmation",
                    chip_label,
                    decision.tokens,
                    decision.limit,
                )
                return InsertOutcome(decision)
            chip_id = self.registry.insert(kind, chip_label, decision.tokens, buffer, decision.text, span=span)
            return InsertOutcome(decision, chip_id=chip_id)
        if isinstance(decision, ChunkDecision):
            return InsertOutcome(decision, queue=ChunkQueue(decision.chunks))

        if decision.was_truncated:
            LOGGER.info("Truncated %s from %s to %d tokens", chip_label, decision.original_tokens, decision.tokens)
        chip_id = self.registry.insert(kind, chip_label, decision.tokens, buffer, decision.text, span=span)
        return InsertOutcome(decision, chip_id=chip_id)

    async def insert_file_chip(
        self,
        buffer: TextBuffer,
        entry: FileEntry,
        span: tuple[int, int] | None = None,
    ) -> str:
        """Insert a file placeholder right away and resolve it once the content arrives.

        On fetch failure the placeholder is swapped back for the text it
        replaced and the error re-raised.
        """

        registry = self.registry
        replaced = ""
        if span is not None:
            start, end = sorted(span)
            replaced = buffer.read()[max(0, start) : max(0, end)]
        chip_id = registry.insert(ChipKind.FILE, entry.label, None, buffer, None, span=span)
        try:
            payload = await self.fetch_context(ChipKind.FILE.value, entry.path)
        except (BridgeError, MalformedMessage) as exc:
            LOGGER.warning("Failed to load %s: %s", entry.path, exc)
            registry.remove(chip_id, replaced)
            raise
        record = ChipRecord(
            id=chip_id,
            type=ChipKind.FILE.value,
            label=entry.label,
            text=payload.text,
            language_id=entry.language_id,
            file_path=entry.path,
        )
        registry.resolve_content(chip_id, format_chips_for_insert([record]))
        return chip_id

    def insert_next_chunk(self, buffer: TextBuffer, queue: ChunkQueue) -> Chunk | None:
        """Insert the queue's current part with its header; ``None`` once all parts are out."""

        if queue.exhausted:
            return None
        chunk = queue.current
        buffer.insert(queue.take())
        return chunk
