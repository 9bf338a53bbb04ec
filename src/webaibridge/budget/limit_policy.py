"""Decides how oversized content is handled before it reaches a chat input."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .chunker import Chunk, TextChunker
from .estimator import TokenEstimator

__all__ = [
    "ChunkDecision",
    "InsertDecision",
    "LimitDecision",
    "LimitMode",
    "LimitPolicy",
    "WarnDecision",
    "effective_limit",
]

LOGGER = logging.getLogger(__name__)

TRUNCATE_RESERVE_TOKENS = 100


class LimitMode(str, Enum):
    WARN = "warn"
    TRUNCATE = "truncate"
    CHUNK = "chunk"

    @classmethod
    def coerce(cls, value: "LimitMode | str | None") -> "LimitMode":
        if isinstance(value, LimitMode):
            return value
        token = str(value or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        return cls.WARN


@dataclass(frozen=True, slots=True)
class InsertDecision:
    text: str
    tokens: int
    limit: int
    was_truncated: bool = False
    original_tokens: int | None = None

    action = "insert"


@dataclass(frozen=True, slots=True)
class WarnDecision:
    text: str
    tokens: int
    limit: int

    action = "warn"


@dataclass(frozen=True, slots=True)
class ChunkDecision:
    chunks: tuple[Chunk, ...]
    tokens: int
    limit: int

    action = "chunk"


LimitDecision = Union[InsertDecision, WarnDecision, ChunkDecision]


def effective_limit(custom_limit: int | None, model_limit: int) -> int:
    """Smaller of a positive custom limit and the model limit."""

    if custom_limit and custom_limit > 0:
        return min(int(custom_limit), model_limit)
    return model_limit


class LimitPolicy:
    """Pure decision table over estimated tokens and the configured mode."""

    def __init__(self, estimator: TokenEstimator | None = None, *, chunker: TextChunker | None = None) -> None:
        self._estimator = estimator or TokenEstimator()
        self._chunker = chunker or TextChunker(self._estimator.estimate)

    @property
    def estimator(self) -> TokenEstimator:
        return self._estimator

    def apply(
        self,
        text: str,
        custom_limit: int | None = None,
        mode: LimitMode | str = LimitMode.WARN,
        model: str | None = None,
        *,
        overlap_tokens: int = 0,
    ) -> LimitDecision:
        mode = LimitMode.coerce(mode)
        limit = effective_limit(custom_limit, self._estimator.get_limit(model))
        tokens = self._estimator.estimate(text)
        LOGGER.debug("Limit check: %d tokens, limit %d, mode %s", tokens, limit, mode.value)

        if tokens <= limit:
            return InsertDecision(text=text, tokens=tokens, limit=limit)

        if mode is LimitMode.TRUNCATE:
            reserve = min(TRUNCATE_RESERVE_TOKENS, limit // 2)
            truncated = self._estimator.truncate_to_budget(text, limit - reserve)
            return InsertDecision(
                text=truncated,
                tokens=self._estimator.estimate(truncated),
                limit=limit,
                was_truncated=True,
                original_tokens=tokens,
            )
        if mode is LimitMode.CHUNK:
            chunks = self._chunker.chunk(text, limit, overlap_tokens)
            return ChunkDecision(chunks=tuple(chunks), tokens=tokens, limit=limit)
        return WarnDecision(text=text, tokens=tokens, limit=limit)
