"""Summarizer hooks used by compaction.

A summarizer is any callable ``(content, max_chars) -> str``.  Provided:

- truncate_summary: boundary-aware truncation (the default)
- key_point_summary: keyword-prioritized line extraction
- OllamaSummarizer: LLM summary via a local Ollama server
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import requests

logger = logging.getLogger(__name__)

Summarizer = Callable[[str, int], str]

ELLIPSIS = "..."
KEY_INDICATORS = (
    "error",
    "fix",
    "implement",
    "test",
    "build",
    "deploy",
    "decision",
    "chose",
    "because",
)


def truncate_summary(content: str, max_chars: int) -> str:
    """Cut *content* to at most *max_chars*, ending with an ellipsis.

    Prefers to stop at a sentence or line boundary when one falls within the
    last 30% of the kept text.
    """
    if len(content) <= max_chars:
        return content
    keep = max(0, max_chars - len(ELLIPSIS))
    truncated = content[:keep]
    boundary = max(truncated.rfind(". "), truncated.rfind("\n"))
    if boundary > keep * 0.7:
        truncated = truncated[: boundary + 1]
    return (truncated + ELLIPSIS)[:max_chars]


def extract_key_points(text: str, max_points: int = 5) -> list[str]:
    """Pick up to *max_points* lines, keyword-bearing lines first."""
    lines = [line.strip()[:100] for line in text.splitlines() if line.strip()]
    points: list[str] = []
    for line in lines:
        if len(points) >= max_points:
            break
        lower = line.lower()
        if any(key in lower for key in KEY_INDICATORS):
            points.append(line)
    for line in lines:
        if len(points) >= max_points:
            break
        if line not in points:
            points.append(line)
    return points


def key_point_summary(content: str, max_chars: int) -> str:
    if len(content) <= max_chars:
        return content
    summary = "\n".join(f"- {point}" for point in extract_key_points(content))
    return truncate_summary(summary, max_chars)


class OllamaSummarizer:
    """Summarize through Ollama's ``/api/generate`` endpoint.

    Requires Ollama running locally (default: http://localhost:11434).  Any
    HTTP failure degrades to :func:`truncate_summary`, and the result is
    always clamped to ``max_chars``.
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = "http://localhost:11434",
        timeout: float = 30.0,
    ) -> None:
        self._model = model
        self._url = f"{base_url}/api/generate"
        self._timeout = timeout

    def __call__(self, content: str, max_chars: int) -> str:
        if len(content) <= max_chars:
            return content
        prompt = (
            f"Summarize the following in at most {max_chars} characters. "
            "Keep errors, decisions and file names.\n\n"
            f"{content}"
        )
        try:
            resp = requests.post(
                self._url,
                json={"model": self._model, "prompt": prompt, "stream": False},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            summary = str(resp.json()["response"]).strip()
        except (requests.RequestException, KeyError, ValueError) as exc:
            logger.warning("Ollama summarization failed, truncating instead: %s", exc)
            return truncate_summary(content, max_chars)
        return truncate_summary(summary, max_chars)
