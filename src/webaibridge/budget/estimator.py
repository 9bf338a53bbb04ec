"""Approximate subword token estimation and per-model token limits."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Literal, Mapping

__all__ = [
    "DEFAULT_MODEL",
    "DEFAULT_TOKEN_LIMITS",
    "QUICK_ESTIMATE_THRESHOLD",
    "TRUNCATION_MARKER",
    "ModelFamily",
    "TokenEstimator",
    "TokenInfo",
    "estimate_tokens",
    "estimate_tokens_quick",
    "format_token_count",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "default"
QUICK_ESTIMATE_THRESHOLD = 10_000
TRUNCATION_MARKER = "\n\n[... truncated]"

DEFAULT_TOKEN_LIMITS: Mapping[str, int] = MappingProxyType(
    {
        "gpt-4": 8192,
        "gpt-4-32k": 32768,
        "gpt-4-turbo": 128000,
        "gpt-4o": 128000,
        "gpt-4o-mini": 128000,
        "gpt-3.5-turbo": 4096,
        "gpt-3.5-turbo-16k": 16385,
        "claude-3-opus": 200000,
        "claude-3-sonnet": 200000,
        "claude-3-haiku": 200000,
        "claude-3.5-sonnet": 200000,
        "claude-2": 100000,
        "gemini-pro": 32768,
        "gemini-1.5-pro": 1048576,
        "gemini-1.5-flash": 1048576,
        DEFAULT_MODEL: 8192,
    }
)

# Words that BPE vocabularies almost always encode as a single token.
_SINGLE_TOKEN_WORDS = frozenset(
    {
        "function", "return", "const", "let", "var", "if", "else", "for", "while",
        "class", "import", "export", "from", "async", "await", "try", "catch",
        "throw", "new", "this", "true", "false", "null", "undefined", "typeof",
        "void", "delete", "in", "of", "switch", "case", "break", "continue",
        "default", "static", "extends", "super", "constructor", "get", "set",
        "public", "private", "protected", "interface", "type", "enum", "readonly",
        "def", "self", "None", "True", "False", "elif", "except", "finally",
        "lambda", "yield", "with", "as", "pass", "raise", "assert", "global",
        "print", "input", "range", "len", "str", "int", "float", "list", "dict",
    }
)

# Ordered: longer operators must be tried before their prefixes.
_OPERATOR_TOKENS: tuple[str, ...] = (
    "===", "!==", "==", "!=", "<=", ">=", "&&", "||", "++", "--",
    "+=", "-=", "*=", "/=", "%=", "=>", "->", "::", "<<", ">>", "...",
    "**", "//", "??", "?.",
)

_WORD_START = re.compile(r"[A-Za-z_]")
_WORD_BODY = re.compile(r"[A-Za-z0-9_]*")
_NUMBER_BODY = re.compile(r"[0-9.xXa-fA-FeE+\-]*")
_CAMEL_HUMP = re.compile(r"[a-z][A-Z]")
_CAMEL_SPLIT = re.compile(r"(?=[A-Z])")
_CODE_INDICATORS = re.compile(r"[{}\[\]();=<>]")
_QUOTES = frozenset("\"'`")


class ModelFamily(str, Enum):
    """Tokenizer families with different efficiency on the same text."""

    GENERIC = "generic"
    GPT = "gpt"
    CLAUDE = "claude"
    GEMINI = "gemini"

    @property
    def adjustment_factor(self) -> float:
        # SentencePiece packs code noticeably tighter than cl100k-style BPE.
        return 0.85 if self is ModelFamily.GEMINI else 1.0

    @property
    def warning_ratio(self) -> float:
        return 0.9 if self is ModelFamily.GEMINI else 0.8

    @classmethod
    def coerce(cls, value: "ModelFamily | str | None") -> "ModelFamily":
        if isinstance(value, ModelFamily):
            return value
        token = str(value or "").strip().lower()
        for member in cls:
            if member.value == token:
                return member
        if token:
            LOGGER.debug("Unknown model family %r; using generic", value)
        return cls.GENERIC


def estimate_tokens(text: str) -> int:
    """Estimate BPE token usage for *text* with a single left-to-right scan.

    Whitespace is merged into the following token except for newlines,
    operators are matched longest-first, identifiers are split on
    ``snake_case``/``camelCase`` boundaries, and numeric and quoted literals
    are costed by length.

    Returns:
        ``0`` for empty text, otherwise at least ``1``.
    """

    if not text:
        return 0

    count = 0
    index = 0
    length = len(text)
    while index < length:
        char = text[index]

        if char.isspace():
            if char == "\n":
                count += 1
            index += 1
            continue

        operator = _match_operator(text, index)
        if operator:
            count += 1
            index += len(operator)
            continue

        if _WORD_START.match(char):
            end = _WORD_BODY.match(text, index).end()
            count += _word_tokens(text[index:end])
            index = end
            continue

        if char.isdigit() and char.isascii():
            end = _NUMBER_BODY.match(text, index).end()
            count += math.ceil((end - index) / 3)
            index = end
            continue

        if char in _QUOTES:
            count, index = _scan_string(text, index, count)
            continue

        count += 1
        index += 1

    return max(1, count)


def estimate_tokens_quick(text: str) -> int:
    """Constant-work estimate for large inputs; defers to :func:`estimate_tokens` below the threshold."""

    if not text:
        return 0
    if len(text) < QUICK_ESTIMATE_THRESHOLD:
        return estimate_tokens(text)
    newlines = text.count("\n")
    code_indicators = len(_CODE_INDICATORS.findall(text))
    divisor = 3.2 if code_indicators > len(text) / 50 else 4.0
    return math.ceil(len(text) / divisor) + math.ceil(newlines * 0.3)


def format_token_count(tokens: int) -> str:
    """Return a compact label such as ``1.2M`` or ``3.4K``."""

    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.1f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return str(tokens)


def _match_operator(text: str, index: int) -> str | None:
    for operator in _OPERATOR_TOKENS:
        if text.startswith(operator, index):
            return operator
    return None


def _word_tokens(word: str) -> int:
    if word in _SINGLE_TOKEN_WORDS or len(word) <= 4:
        return 1
    if "_" in word:
        return len(word.split("_"))
    if _CAMEL_HUMP.search(word):
        return len([part for part in _CAMEL_SPLIT.split(word) if part])
    return math.ceil(len(word) / 4)


def _scan_string(text: str, index: int, count: int) -> tuple[int, int]:
    quote = text[index]
    count += 1
    index += 1
    body_start = index
    length = len(text)
    while index < length and text[index] != quote:
        index += 2 if text[index] == "\\" and index + 1 < length else 1
    count += math.ceil((index - body_start) / 4)
    if index < length:
        count += 1
        index += 1
    return count, index


@dataclass(frozen=True, slots=True)
class TokenInfo:
    """Usage breakdown of a piece of text against a model limit."""

    tokens: int
    limit: int
    percentage: int
    is_warning: bool
    is_over: bool
    remaining: int
    status: Literal["ok", "warning", "error"]


class TokenEstimator:
    """Token estimation bound to a model-limit table and a tokenizer family."""

    def __init__(
        self,
        profiles: Mapping[str, int] | None = None,
        *,
        family: ModelFamily | str | None = None,
    ) -> None:
        table = dict(DEFAULT_TOKEN_LIMITS)
        for name, limit in (profiles or {}).items():
            try:
                value = int(limit)
            except (TypeError, ValueError):
                LOGGER.warning("Ignoring non-integer token limit for %s: %r", name, limit)
                continue
            if value > 0:
                table[str(name)] = value
        self._profiles: Mapping[str, int] = MappingProxyType(table)
        self._family = ModelFamily.coerce(family)

    @property
    def family(self) -> ModelFamily:
        return self._family

    @property
    def profiles(self) -> Mapping[str, int]:
        return self._profiles

    def reload(
        self,
        profiles: Mapping[str, int] | None = None,
        *,
        family: ModelFamily | str | None = None,
    ) -> "TokenEstimator":
        """Return a new estimator built from fresh configuration."""

        return TokenEstimator(profiles, family=self._family if family is None else family)

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------
    def estimate(self, text: str) -> int:
        return self._adjust(estimate_tokens(text))

    def estimate_quick(self, text: str) -> int:
        return self._adjust(estimate_tokens_quick(text))

    def _adjust(self, tokens: int) -> int:
        factor = self._family.adjustment_factor
        if tokens <= 0 or factor == 1.0:
            return tokens
        return max(1, math.floor(tokens * factor))

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------
    def get_limit(self, model: str | None = None) -> int:
        if model and model in self._profiles:
            return self._profiles[model]
        return self._profiles[DEFAULT_MODEL]

    def warning_threshold(self, model: str | None = None) -> int:
        return math.floor(self.get_limit(model) * self._family.warning_ratio)

    def exceeds_limit(self, tokens: int, model: str | None = None) -> bool:
        return tokens > self.get_limit(model)

    def is_warning_level(self, tokens: int, model: str | None = None) -> bool:
        return self.warning_threshold(model) <= tokens < self.get_limit(model)

    def available_models(self) -> list[str]:
        return [name for name in self._profiles if name != DEFAULT_MODEL]

    def token_info(self, text: str, model: str | None = None) -> TokenInfo:
        tokens = self.estimate_quick(text) if len(text) > QUICK_ESTIMATE_THRESHOLD else self.estimate(text)
        limit = self.get_limit(model)
        is_over = tokens > limit
        is_warning = self.is_warning_level(tokens, model)
        if is_over:
            status: Literal["ok", "warning", "error"] = "error"
        elif tokens >= self.warning_threshold(model):
            status = "warning"
        else:
            status = "ok"
        return TokenInfo(
            tokens=tokens,
            limit=limit,
            percentage=round(tokens / limit * 100),
            is_warning=is_warning,
            is_over=is_over,
            remaining=max(0, limit - tokens),
            status=status,
        )

    # ------------------------------------------------------------------
    # Truncation
    # ------------------------------------------------------------------
    def truncate_to_limit(self, text: str, model: str | None = None, reserve: int = 0) -> str:
        """Return the longest prefix of *text* (plus marker) that fits ``limit - reserve``."""

        return self.truncate_to_budget(text, self.get_limit(model) - max(0, int(reserve)))

    def truncate_to_budget(self, text: str, budget: int) -> str:
        if self.estimate(text) <= budget:
            return text
        if budget <= 0:
            return ""
        # The marker is part of the returned text, so it is paid for up front.
        marker = TRUNCATION_MARKER
        available = budget - self.estimate(marker)
        if available < 0:
            # Budget smaller than the marker itself: bare prefix.
            marker, available = "", budget
        low, high = 0, len(text)
        best = 0
        while low < high:
            mid = (low + high) // 2
            if self.estimate(text[:mid]) <= available:
                best = mid
                low = mid + 1
            else:
                high = mid
        LOGGER.debug("Truncated %d chars to %d (budget=%d)", len(text), best, budget)
        return text[:best] + marker
