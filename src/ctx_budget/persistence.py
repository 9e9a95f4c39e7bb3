"""Save, load and clear a project's context budget.

The on-disk shape is ``<project>/.ctxbudget/context-budget.json``::

    {"maxTokens": ..., "usedTokens": ...,
     "tiers": {"hot": [...], "warm": [...], "cold": [...], "frozen": [...]},
     "compactionHistory": [...], "sessionStart": ...}

Loading never raises on bad data; see :mod:`ctx_budget.state_store`.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from pydantic import Field

from .budget import (
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_PRIORITY,
    MAX_COMPACTION_HISTORY,
    CompactionRecord,
    ContentTier,
    ContentType,
    ContextBudget,
    ContextItem,
    clamp_priority,
    create_budget,
    new_item_id,
)
from .state_store import Entries, JsonStateStore, StateRecord
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

BUDGET_FILE = "context-budget.json"


class ItemRecord(StateRecord):
    id: str = Field(default_factory=new_item_id)
    type: ContentType = ContentType.REFERENCE
    tier: ContentTier = ContentTier.HOT
    content: str = ""
    tokens: int | None = None
    priority: int = DEFAULT_PRIORITY
    created_at: float = Field(default_factory=time.time)
    last_accessed_at: float = Field(default_factory=time.time)
    access_count: int = 1


class TiersRecord(StateRecord):
    hot: Entries[ItemRecord] = Field(default_factory=list)
    warm: Entries[ItemRecord] = Field(default_factory=list)
    cold: Entries[ItemRecord] = Field(default_factory=list)
    frozen: Entries[ItemRecord] = Field(default_factory=list)


class CompactionEntryRecord(StateRecord):
    timestamp: float = 0.0
    tokens_before: int = 0
    tokens_after: int = 0
    items_compacted: int = 0
    items_dropped: int = 0
    duration: float = 0.0


class BudgetRecord(StateRecord):
    max_tokens: int | float = DEFAULT_CONTEXT_WINDOW
    used_tokens: int | None = None
    tiers: TiersRecord = Field(default_factory=TiersRecord)
    compaction_history: Entries[CompactionEntryRecord] = Field(default_factory=list)
    session_start: float = Field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def budget_to_record(budget: ContextBudget) -> BudgetRecord:
    tiers = TiersRecord(
        **{
            tier.value: [
                ItemRecord(
                    id=item.id,
                    type=item.type,
                    tier=tier,
                    content=item.content,
                    tokens=item.tokens,
                    priority=item.priority,
                    created_at=item.created_at,
                    last_accessed_at=item.last_accessed_at,
                    access_count=item.access_count,
                )
                for item in budget.tiers[tier]
            ]
            for tier in ContentTier
        }
    )
    history = [
        CompactionEntryRecord(
            timestamp=entry.timestamp,
            tokens_before=entry.tokens_before,
            tokens_after=entry.tokens_after,
            items_compacted=entry.items_compacted,
            items_dropped=entry.items_dropped,
            duration=entry.duration,
        )
        for entry in budget.compaction_history
    ]
    return BudgetRecord(
        max_tokens=budget.max_tokens,
        used_tokens=budget.used_tokens,
        tiers=tiers,
        compaction_history=history,
        session_start=budget.session_start,
    )


def budget_from_record(record: BudgetRecord) -> ContextBudget:
    """Build a runtime budget, keeping only the first item seen per id."""
    budget = create_budget(record.max_tokens)
    budget.session_start = record.session_start
    seen: set[str] = set()
    total = 0
    for tier in ContentTier:
        for entry in getattr(record.tiers, tier.value):
            if entry.id in seen:
                logger.warning("Skipping duplicate item id %s in %s tier", entry.id, tier)
                continue
            seen.add(entry.id)
            tokens = entry.tokens if entry.tokens is not None else estimate_tokens(entry.content)
            budget.tiers[tier].append(
                ContextItem(
                    id=entry.id,
                    type=entry.type,
                    tier=tier,
                    content=entry.content,
                    tokens=tokens,
                    priority=clamp_priority(entry.priority),
                    created_at=entry.created_at,
                    last_accessed_at=entry.last_accessed_at,
                    access_count=max(0, entry.access_count),
                )
            )
            total += tokens

    budget.used_tokens = total if record.used_tokens is None else record.used_tokens
    budget.compaction_history = [
        CompactionRecord(
            timestamp=entry.timestamp,
            tokens_before=entry.tokens_before,
            tokens_after=entry.tokens_after,
            items_compacted=entry.items_compacted,
            items_dropped=entry.items_dropped,
            duration=entry.duration,
        )
        for entry in record.compaction_history[-MAX_COMPACTION_HISTORY:]
    ]
    return budget


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def budget_store(project_path: str | Path) -> JsonStateStore[BudgetRecord]:
    return JsonStateStore(project_path, BUDGET_FILE, BudgetRecord)


def save_budget(project_path: str | Path, budget: ContextBudget) -> bool:
    """Atomically write *budget*; False if the file could not be written."""
    return budget_store(project_path).save(budget_to_record(budget))


def load_budget(project_path: str | Path) -> ContextBudget:
    """Load the project's budget, or a fresh default if there is none usable."""
    return budget_from_record(budget_store(project_path).load())


def clear_budget(
    project_path: str | Path, max_tokens: float = DEFAULT_CONTEXT_WINDOW
) -> ContextBudget:
    """Reset the persisted budget to an empty one and return it."""
    fresh = create_budget(max_tokens)
    save_budget(project_path, fresh)
    return fresh
