"""Tests for the limit policy decision table."""

from __future__ import annotations

import pytest

from webaibridge.budget.estimator import TRUNCATION_MARKER, TokenEstimator
from webaibridge.budget.limit_policy import (
    ChunkDecision,
    InsertDecision,
    LimitMode,
    LimitPolicy,
    WarnDecision,
    effective_limit,
)

LONG_TEXT = " ".join(["word"] * 200)


@pytest.fixture
def policy() -> LimitPolicy:
    return LimitPolicy(TokenEstimator({"small": 50}))


@pytest.mark.parametrize("mode", list(LimitMode))
def test_text_within_limit_is_inserted_in_every_mode(policy: LimitPolicy, mode: LimitMode) -> None:
    decision = policy.apply("tiny text", None, mode, "small")

    assert isinstance(decision, InsertDecision)
    assert decision.action == "insert"
    assert decision.text == "tiny text"
    assert decision.limit == 50
    assert not decision.was_truncated


def test_warn_mode_keeps_original_text(policy: LimitPolicy) -> None:
    decision = policy.apply(LONG_TEXT, None, "warn", "small")

    assert isinstance(decision, WarnDecision)
    assert decision.action == "warn"
    assert decision.text == LONG_TEXT
    assert decision.tokens == 200
    assert decision.limit == 50


def test_truncate_mode_flags_truncation(policy: LimitPolicy) -> None:
    decision = policy.apply(LONG_TEXT, None, LimitMode.TRUNCATE, "small")

    assert isinstance(decision, InsertDecision)
    assert decision.was_truncated
    assert decision.original_tokens == 200
    assert decision.tokens <= decision.limit
    assert decision.text.endswith(TRUNCATION_MARKER)


def test_chunk_mode_splits_into_parts(policy: LimitPolicy) -> None:
    decision = policy.apply(LONG_TEXT, None, "chunk", "small")

    assert isinstance(decision, ChunkDecision)
    assert decision.action == "chunk"
    assert len(decision.chunks) > 1
    assert all(chunk.tokens <= 50 for chunk in decision.chunks)
    assert {chunk.total_parts for chunk in decision.chunks} == {len(decision.chunks)}


def test_custom_limit_narrows_the_model_limit(policy: LimitPolicy) -> None:
    decision = policy.apply(" ".join(["word"] * 40), 30, LimitMode.WARN, "small")

    assert isinstance(decision, WarnDecision)
    assert decision.limit == 30


def test_effective_limit() -> None:
    assert effective_limit(None, 50) == 50
    assert effective_limit(0, 50) == 50
    assert effective_limit(-5, 50) == 50
    assert effective_limit(30, 50) == 30
    assert effective_limit(1000, 50) == 50


def test_unknown_mode_falls_back_to_warn() -> None:
    assert LimitMode.coerce("bogus") is LimitMode.WARN
    assert LimitMode.coerce(None) is LimitMode.WARN
    assert LimitMode.coerce("CHUNK") is LimitMode.CHUNK


def test_truncate_mode_with_tiny_limit_stays_within_limit(policy: LimitPolicy) -> None:
    decision = policy.apply(LONG_TEXT, 10, LimitMode.TRUNCATE, "small")

    assert isinstance(decision, InsertDecision)
    assert decision.was_truncated
    assert decision.limit == 10
    assert 0 < decision.tokens <= 5
    assert LONG_TEXT.startswith(decision.text)
