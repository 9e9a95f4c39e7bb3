"""Token-total invariant checks and on-demand repair."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .budget import ContentTier, ContextBudget
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    valid: bool
    discrepancy: int  # stored minus expected
    expected_tokens: int


@dataclass
class RepairResult:
    items_repaired: int
    tokens_before: int
    tokens_after: int


def validate_budget(budget: ContextBudget) -> ValidationResult:
    """Compare the stored token total against the sum over all items."""
    expected = sum(item.tokens for items in budget.tiers.values() for item in items)
    discrepancy = budget.used_tokens - expected
    return ValidationResult(valid=discrepancy == 0, discrepancy=discrepancy, expected_tokens=expected)


def repair_budget(budget: ContextBudget) -> RepairResult:
    """Re-estimate inconsistent items and reset the token total.

    Single pass over every item.  Non-string content becomes empty, token
    counts that disagree with a fresh estimate are replaced, and an item's
    ``tier`` field is realigned with the bucket that holds it.
    """
    tokens_before = budget.used_tokens
    repaired = 0
    total = 0
    for tier in ContentTier:
        for item in budget.tiers[tier]:
            changed = False
            if not isinstance(item.content, str):
                item.content = ""
                changed = True
            fresh = estimate_tokens(item.content)
            if type(item.tokens) is not int or item.tokens != fresh:
                item.tokens = fresh
                changed = True
            if item.tier is not tier:
                item.tier = tier
                changed = True
            repaired += changed
            total += item.tokens
    budget.used_tokens = total

    if repaired or tokens_before != total:
        logger.info(
            "Repaired budget: %d item(s) fixed, used tokens %s -> %d",
            repaired,
            tokens_before,
            total,
        )
    return RepairResult(items_repaired=repaired, tokens_before=tokens_before, tokens_after=total)
