"""Render a budget into prompt text.

Layout follows attention: stable context (system and task items) opens the
prompt, older warm and cold material sits in the middle, and the recent hot
items plus errors close it.  Frozen items are never rendered.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

from .budget import ContentTier, ContentType, ContextBudget, ContextItem, touch_item

SECTION_SEPARATOR = "\n\n---\n\n"

_PROTECTED = frozenset({ContentType.SYSTEM, ContentType.TASK, ContentType.ERROR})


class Position(StrEnum):
    BEGINNING = "beginning"
    MIDDLE = "middle"
    END = "end"


_HEADINGS: dict[Position, str] = {
    Position.BEGINNING: "# INSTRUCTIONS & TASK",
    Position.MIDDLE: "# PROJECT CONTEXT",
    Position.END: "# CURRENT SITUATION",
}


@dataclass
class AssembledContext:
    text: str
    item_ids: list[str] = field(default_factory=list)
    total_tokens: int = 0
    truncated: bool = False


def position_of(item: ContextItem) -> Position:
    if item.type in (ContentType.SYSTEM, ContentType.TASK):
        return Position.BEGINNING
    if item.type is ContentType.ERROR or item.tier is ContentTier.HOT:
        return Position.END
    return Position.MIDDLE


def _admission_key(item: ContextItem) -> tuple[bool, int, float]:
    return (item.type not in _PROTECTED, -item.priority, -item.last_accessed_at)


def assemble_context(budget: ContextBudget, *, max_tokens: float | None = None) -> AssembledContext:
    """Build prompt text from the highest-value items that fit in *max_tokens*.

    Protected items (system, task, error) are admitted first, the rest by
    descending priority, most recently used first on ties.  An item that
    does not fit is skipped and smaller ones are still tried.  Every item
    that makes it into the text counts as accessed.
    """
    limit = budget.max_tokens if max_tokens is None else max_tokens
    candidates = [
        item for tier in ContentTier if tier is not ContentTier.FROZEN for item in budget.tiers[tier]
    ]

    admitted: set[str] = set()
    used = 0
    truncated = False
    for item in sorted(candidates, key=_admission_key):
        if used + item.tokens > limit:
            truncated = True
            continue
        admitted.add(item.id)
        used += item.tokens

    # Rendering keeps tier-then-insertion order inside each section.
    sections: dict[Position, list[ContextItem]] = {position: [] for position in Position}
    for item in candidates:
        if item.id in admitted:
            sections[position_of(item)].append(item)

    rendered = [
        _HEADINGS[position] + "\n" + "\n\n".join(item.content for item in items)
        for position, items in sections.items()
        if items
    ]
    now = time.time()
    ids: list[str] = []
    for items in sections.values():
        for item in items:
            touch_item(item, now)
            ids.append(item.id)

    return AssembledContext(
        text=SECTION_SEPARATOR.join(rendered),
        item_ids=ids,
        total_tokens=used,
        truncated=truncated,
    )
