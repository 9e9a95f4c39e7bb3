"""Compaction: shrink a budget toward a target saturation.

Steps run in order and stop as soon as the target is met:

1. summarize warm-tier items
2. drop frozen-tier items
3. drop cold-tier items

Summaries and drops both go lowest priority first, oldest access first.
System items are never summarized or dropped, and the last error item in the
budget is never dropped.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from .budget import (
    CompactionRecord,
    ContentTier,
    ContentType,
    ContextBudget,
    ContextItem,
    calculate_saturation,
)
from .summarizers import Summarizer, truncate_summary
from .telemetry import record_event, trace_compaction
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_TARGET_SATURATION = 0.6
MIN_SUMMARY_CHARS = 20
MAX_SUMMARY_RETRIES = 3


@dataclass
class CompactionResult:
    """Outcome of one compaction run.

    ``success`` is True when the budget ends at or below the target.
    """

    success: bool
    tokens_saved: int
    tokens_after: int
    items_compacted: int
    items_dropped: int
    duration: float


def _drop_order(item: ContextItem) -> tuple[int, float]:
    return (item.priority, item.last_accessed_at)


def _over_target(budget: ContextBudget, target: float) -> bool:
    return calculate_saturation(budget) > target


def _excess_tokens(budget: ContextBudget, target: float) -> float:
    """Tokens to shed before the target is met."""
    if math.isinf(budget.max_tokens) and budget.max_tokens > 0:
        return 0.0
    if not budget.max_tokens > 0:
        return float(budget.used_tokens)
    return budget.used_tokens - target * budget.max_tokens


def _shrink(
    item: ContextItem, keep_ratio: float, summarize: Summarizer
) -> tuple[str, int] | None:
    """Summarize *item* to about ``keep_ratio`` of its tokens.

    The character allowance follows the item's own chars-per-token rate, and
    is tightened while the summary still exceeds its token allowance.
    """
    allowance = int(item.tokens * keep_ratio)
    max_chars = max(MIN_SUMMARY_CHARS, allowance * len(item.content) // item.tokens)
    if len(item.content) <= max_chars:
        return None
    summary = summarize(item.content, max_chars)
    tokens = estimate_tokens(summary)
    for _ in range(MAX_SUMMARY_RETRIES):
        if tokens <= allowance or max_chars <= MIN_SUMMARY_CHARS:
            break
        max_chars = max(MIN_SUMMARY_CHARS, min(max_chars - 1, max_chars * allowance // tokens))
        summary = summarize(item.content, max_chars)
        tokens = estimate_tokens(summary)
    if tokens >= item.tokens:
        return None
    return summary, tokens


def _summarize_warm(budget: ContextBudget, target: float, summarize: Summarizer) -> int:
    candidates = sorted(
        (
            item
            for item in budget.tiers[ContentTier.WARM]
            if not item.type.never_dropped and item.tokens > 0
        ),
        key=_drop_order,
    )
    warm_tokens = sum(item.tokens for item in candidates)
    if warm_tokens <= 0:
        return 0
    keep_ratio = max(0.0, 1 - _excess_tokens(budget, target) / warm_tokens)

    compacted = 0
    for item in candidates:
        if not _over_target(budget, target):
            break
        shrunk = _shrink(item, keep_ratio, summarize)
        if shrunk is None:
            continue
        summary, tokens = shrunk
        budget.used_tokens -= item.tokens - tokens
        item.content = summary
        item.tokens = tokens
        compacted += 1
    return compacted


def _drop_from_tier(budget: ContextBudget, tier: ContentTier, target: float) -> int:
    errors_left = sum(
        1 for items in budget.tiers.values() for item in items if item.type is ContentType.ERROR
    )
    dropped_ids: set[str] = set()
    for item in sorted(budget.tiers[tier], key=_drop_order):
        if not _over_target(budget, target):
            break
        if item.type.never_dropped:
            continue
        if item.type is ContentType.ERROR:
            if errors_left <= 1:
                continue
            errors_left -= 1
        dropped_ids.add(item.id)
        budget.used_tokens -= item.tokens

    if dropped_ids:
        budget.tiers[tier] = [item for item in budget.tiers[tier] if item.id not in dropped_ids]
    return len(dropped_ids)


def compact_budget(
    budget: ContextBudget,
    *,
    target_saturation: float = DEFAULT_TARGET_SATURATION,
    summarizer: Summarizer | None = None,
) -> CompactionResult:
    """Reduce ``used_tokens`` until saturation is at or below the target.

    Every call appends one entry to the budget's compaction history, even
    when nothing needed to change.
    """
    summarize = summarizer or truncate_summary
    started = time.perf_counter()
    tokens_before = budget.used_tokens
    compacted = 0
    dropped = 0

    with trace_compaction(tokens_before, target_saturation) as span:
        if _over_target(budget, target_saturation):
            compacted = _summarize_warm(budget, target_saturation, summarize)
            record_event("budget/summarized", {"items": compacted, "tokens": budget.used_tokens})
            for tier in (ContentTier.FROZEN, ContentTier.COLD):
                if not _over_target(budget, target_saturation):
                    break
                count = _drop_from_tier(budget, tier, target_saturation)
                record_event(
                    "budget/dropped",
                    {"tier": str(tier), "items": count, "tokens": budget.used_tokens},
                )
                dropped += count
        span.set_attribute("budget.tokens_after", budget.used_tokens)
        span.set_attribute("budget.items_dropped", dropped)

    duration = time.perf_counter() - started
    budget.record_compaction(
        CompactionRecord(
            timestamp=time.time(),
            tokens_before=tokens_before,
            tokens_after=budget.used_tokens,
            items_compacted=compacted,
            items_dropped=dropped,
            duration=duration,
        )
    )
    logger.debug(
        "Compacted budget %d -> %d tokens (%d summarized, %d dropped) in %.3fs",
        tokens_before,
        budget.used_tokens,
        compacted,
        dropped,
        duration,
    )
    return CompactionResult(
        success=not _over_target(budget, target_saturation),
        tokens_saved=tokens_before - budget.used_tokens,
        tokens_after=budget.used_tokens,
        items_compacted=compacted,
        items_dropped=dropped,
        duration=duration,
    )
