"""Token estimation: character-based heuristic tuned for prose and code."""

from __future__ import annotations

import json
import math
from typing import Any

CHARS_PER_TOKEN = 4
# Symbol-dense text (code, JSON, markup) tokenizes into more pieces per char.
DENSE_CHARS_PER_TOKEN = 3
SYMBOL_DENSITY_THRESHOLD = 0.3
# Shorter strings never get the dense rate.
MIN_DENSE_LENGTH = 10
# Density is measured on an evenly strided sample of at most this many chars.
_DENSITY_SAMPLE = 100_000


def symbol_density(text: str) -> float:
    """Fraction of characters that are neither alphanumeric nor whitespace."""
    if not text:
        return 0.0
    sample = text
    if len(text) > _DENSITY_SAMPLE:
        sample = text[:: len(text) // _DENSITY_SAMPLE]
    alnum = sum(map(str.isalnum, sample))
    space = sum(map(str.isspace, sample))
    return (len(sample) - alnum - space) / len(sample)


def estimate_tokens(text: str | None) -> int:
    """Estimate the prompt-token cost of *text*.

    Empty or missing text costs nothing; anything else costs at least one
    token.  Plain text is charged one token per four characters, symbol-dense
    text longer than ten characters one token per three.
    """
    if not text:
        return 0
    length = len(text)
    if length > MIN_DENSE_LENGTH and symbol_density(text) > SYMBOL_DENSITY_THRESHOLD:
        return math.ceil(length / DENSE_CHARS_PER_TOKEN)
    return max(1, math.ceil(length / CHARS_PER_TOKEN))


def estimate_structured_tokens(value: Any) -> int:
    """Estimate tokens for a JSON-serializable value.

    Values that cannot be serialized (self-referential or too deeply nested)
    cost 0 rather than raising.
    """
    try:
        serialized = json.dumps(value, default=str)
    except (ValueError, TypeError, RecursionError):
        return 0
    return estimate_tokens(serialized)
