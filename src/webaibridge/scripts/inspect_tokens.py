"""CLI helper to inspect token estimates, limits and chunk plans for sample text."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from ..budget.chunker import TextChunker
from ..budget.estimator import ModelFamily, TokenEstimator, estimate_tokens_quick, format_token_count


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Inspect token estimates for the given text input.")
    parser.add_argument("--model", default="gpt-4", help="Model identifier used for the limit lookup.")
    parser.add_argument(
        "--family",
        default=ModelFamily.GENERIC.value,
        choices=[member.value for member in ModelFamily],
        help="Tokenizer family adjustment to apply.",
    )
    parser.add_argument(
        "--file",
        type=Path,
        help="Optional file containing the text to inspect. Reads stdin when omitted and --text not provided.",
    )
    parser.add_argument("--text", help="Inline text to inspect. Overrides --file when provided.")
    parser.add_argument("--chunk", type=int, metavar="N", help="Split the text into parts of at most N tokens.")
    parser.add_argument("--overlap", type=int, default=0, metavar="K", help="Tokens of overlap between parts.")
    args = parser.parse_args(argv)

    payload = _load_text(args.text, args.file)
    if not payload:
        print("No input text provided.", file=sys.stderr)
        return 1

    estimator = TokenEstimator(family=args.family)
    info = estimator.token_info(payload, args.model)

    print(f"model: {args.model} ({estimator.family.value})")
    print(f"characters: {len(payload)}")
    print(f"tokens (estimate): {estimator.estimate(payload)}")
    print(f"tokens (quick): {estimate_tokens_quick(payload)}")
    print(f"limit: {format_token_count(info.limit)} ({info.percentage}% used)")
    print(f"status: {info.status}")

    if args.chunk is not None:
        if args.chunk < 1:
            print("--chunk must be a positive integer.", file=sys.stderr)
            return 2
        chunks = TextChunker(estimator.estimate).chunk(payload, args.chunk, args.overlap)
        print(f"parts: {len(chunks)}")
        for chunk in chunks:
            print(f"  [{chunk.part_number}/{chunk.total_parts}] {chunk.tokens} tokens, {len(chunk.text)} chars")
    return 0


def _load_text(inline: str | None, path: Path | None) -> str:
    if inline:
        return inline
    if path:
        return path.read_text(encoding="utf-8")
    data = sys.stdin.read()
    return data.strip()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
