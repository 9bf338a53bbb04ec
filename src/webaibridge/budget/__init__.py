"""Token budgeting: estimation, chunking, and limit handling."""

from .chunker import Chunk, ChunkQueue, TextChunker, chunk_text
from .estimator import ModelFamily, TokenEstimator, TokenInfo, estimate_tokens, estimate_tokens_quick, format_token_count
from .limit_policy import ChunkDecision, InsertDecision, LimitDecision, LimitMode, LimitPolicy, WarnDecision

__all__ = [
    "Chunk",
    "ChunkDecision",
    "ChunkQueue",
    "InsertDecision",
    "LimitDecision",
    "LimitMode",
    "LimitPolicy",
    "ModelFamily",
    "TextChunker",
    "TokenEstimator",
    "TokenInfo",
    "WarnDecision",
    "chunk_text",
    "estimate_tokens",
    "estimate_tokens_quick",
    "format_token_count",
]
