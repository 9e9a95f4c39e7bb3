"""Read-only diagnostics over a context budget."""

from __future__ import annotations

import time

from pydantic import BaseModel, Field

from .budget import (
    TIER_LIMITS,
    ContentTier,
    ContentType,
    ContextBudget,
    SaturationLevel,
    calculate_saturation,
    count_by_type,
    get_saturation_level,
)
from .compaction import MIN_SUMMARY_CHARS
from .summarizers import truncate_summary
from .tokens import estimate_tokens

DEFAULT_STALE_AFTER = 600.0

_LEVEL_ADVICE: dict[SaturationLevel, str] = {
    SaturationLevel.WARNING: "compaction recommended",
    SaturationLevel.CRITICAL: "compact now",
    SaturationLevel.EMERGENCY: "compact immediately, new content will not fit",
}


class TierUsage(BaseModel):
    items: int = 0
    tokens: int = 0


class SaturationReport(BaseModel):
    """Snapshot of how full a budget is and what to do about it."""

    saturation: float
    level: SaturationLevel
    used_tokens: int
    max_tokens: float
    tier_breakdown: dict[ContentTier, TierUsage]
    recommendations: list[str] = Field(default_factory=list)
    compaction_recommended: bool = False
    potential_savings: int | None = None


class BudgetStats(BaseModel):
    total_items: int
    used_tokens: int
    max_tokens: float
    saturation: float
    level: SaturationLevel
    items_by_tier: dict[ContentTier, int]
    items_by_type: dict[ContentType, int]
    compactions: int


def _summarization_savings(budget: ContextBudget) -> int:
    """Tokens a default summarization pass over the warm tier would free."""
    saved = 0
    for item in budget.tiers[ContentTier.WARM]:
        if item.type.never_dropped:
            continue
        max_chars = max(MIN_SUMMARY_CHARS, len(item.content) // 4)
        summary_tokens = estimate_tokens(truncate_summary(item.content, max_chars))
        saved += max(0, item.tokens - summary_tokens)
    return saved


def get_saturation_report(
    budget: ContextBudget,
    *,
    stale_after: float = DEFAULT_STALE_AFTER,
    now: float | None = None,
) -> SaturationReport:
    clock = time.time() if now is None else now
    saturation = calculate_saturation(budget)
    level = get_saturation_level(saturation)

    breakdown = {
        tier: TierUsage(
            items=len(budget.tiers[tier]),
            tokens=sum(item.tokens for item in budget.tiers[tier]),
        )
        for tier in ContentTier
    }

    recommendations: list[str] = []
    compaction_recommended = level is not SaturationLevel.OPTIMAL
    if compaction_recommended:
        recommendations.append(f"Context at {saturation:.0%} ({level}): {_LEVEL_ADVICE[level]}")

    for tier in ContentTier:
        usage = breakdown[tier]
        if usage.items > TIER_LIMITS[tier]:
            recommendations.append(
                f"{tier} tier over limit ({usage.items}/{TIER_LIMITS[tier]} items)"
            )

    stale = sum(
        1 for item in budget.tiers[ContentTier.HOT] if clock - item.last_accessed_at >= stale_after
    )
    if stale:
        recommendations.append(
            f"{stale} hot item(s) not accessed in {int(stale_after // 60)}+ minutes;"
            " consider moving them to warm"
        )

    potential_savings = None
    if compaction_recommended:
        frozen = breakdown[ContentTier.FROZEN]
        if frozen.items:
            recommendations.append(
                f"{frozen.items} frozen item(s) ({frozen.tokens} tokens) can be dropped"
            )
        if breakdown[ContentTier.WARM].tokens > 0:
            potential_savings = _summarization_savings(budget)

    return SaturationReport(
        saturation=saturation,
        level=level,
        used_tokens=budget.used_tokens,
        max_tokens=budget.max_tokens,
        tier_breakdown=breakdown,
        recommendations=recommendations,
        compaction_recommended=compaction_recommended,
        potential_savings=potential_savings,
    )


def get_budget_stats(budget: ContextBudget) -> BudgetStats:
    saturation = calculate_saturation(budget)
    by_tier = {tier: len(budget.tiers[tier]) for tier in ContentTier}
    return BudgetStats(
        total_items=sum(by_tier.values()),
        used_tokens=budget.used_tokens,
        max_tokens=budget.max_tokens,
        saturation=saturation,
        level=get_saturation_level(saturation),
        items_by_tier=by_tier,
        items_by_type=count_by_type(budget),
        compactions=len(budget.compaction_history),
    )
