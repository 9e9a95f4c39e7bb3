"""Tests for time-based tier demotion."""

from __future__ import annotations

from ctx_budget.aging import age_items
from ctx_budget.budget import ContentTier, add_content, create_budget
from ctx_budget.validation import validate_budget

NOW = 1_700_000_000.0


def _aged(budget, content_type, idle, tier="hot"):
    item = add_content(budget, f"{content_type} content", content_type, tier=tier)
    item.last_accessed_at = NOW - idle
    return item


def test_fresh_items_stay_put() -> None:
    budget = create_budget(1000)
    item = _aged(budget, "file", idle=10)
    result = age_items(budget, now=NOW)
    assert result.aged == 0
    assert item.tier is ContentTier.HOT


def test_idle_hot_item_moves_to_warm() -> None:
    budget = create_budget(1000)
    item = _aged(budget, "file", idle=400)
    result = age_items(budget, now=NOW)
    assert result.aged == 1
    assert result.moved_to[ContentTier.WARM] == 1
    assert item.tier is ContentTier.WARM
    assert budget.tiers[ContentTier.WARM] == [item]
    assert budget.tiers[ContentTier.HOT] == []


def test_very_idle_item_cascades_to_the_right_tier() -> None:
    budget = create_budget(1000)
    cold = _aged(budget, "file", idle=2000)
    frozen = _aged(budget, "response", idle=10_000)
    age_items(budget, now=NOW)
    assert cold.tier is ContentTier.COLD
    assert frozen.tier is ContentTier.FROZEN


def test_aging_is_idempotent_for_a_fixed_clock() -> None:
    budget = create_budget(1000)
    for idle in (10, 400, 2000, 10_000):
        _aged(budget, "file", idle=idle)
    _aged(budget, "reference", idle=5000, tier="warm")
    first = age_items(budget, now=NOW)
    second = age_items(budget, now=NOW)
    assert first.aged == 4
    assert second.aged == 0


def test_system_and_task_never_age() -> None:
    budget = create_budget(1000)
    system = _aged(budget, "system", idle=10**7)
    task = _aged(budget, "task", idle=10**7, tier="warm")
    age_items(budget, hot_max_age=0, warm_max_age=0, cold_max_age=0, now=NOW)
    assert system.tier is ContentTier.HOT
    assert task.tier is ContentTier.WARM


def test_zero_threshold_ages_everything_immediately() -> None:
    budget = create_budget(1000)
    item = add_content(budget, "just added", "file")
    result = age_items(budget, hot_max_age=0, warm_max_age=0, cold_max_age=0)
    assert result.aged == 1
    assert item.tier is ContentTier.FROZEN


def test_zero_hot_threshold_moves_one_tier_when_warm_is_lenient() -> None:
    budget = create_budget(1000)
    item = add_content(budget, "just added", "file")
    age_items(budget, hot_max_age=0)
    assert item.tier is ContentTier.WARM


def test_frozen_items_are_left_alone() -> None:
    budget = create_budget(1000)
    item = _aged(budget, "file", idle=10**7, tier="frozen")
    result = age_items(budget, hot_max_age=0, warm_max_age=0, cold_max_age=0, now=NOW)
    assert result.aged == 0
    assert budget.tiers[ContentTier.FROZEN] == [item]


def test_aging_preserves_token_total_and_order() -> None:
    budget = create_budget(10_000)
    items = [_aged(budget, "file", idle=400) for _ in range(5)]
    used = budget.used_tokens
    age_items(budget, now=NOW)
    assert budget.used_tokens == used
    assert budget.tiers[ContentTier.WARM] == items
    assert validate_budget(budget).valid


def test_aging_many_items() -> None:
    budget = create_budget(10**9)
    for i in range(10_000):
        _aged(budget, "file", idle=400 if i % 2 else 10)
    result = age_items(budget, now=NOW)
    assert result.aged == 5000
    assert len(budget.tiers[ContentTier.HOT]) == 5000
    assert len(budget.tiers[ContentTier.WARM]) == 5000
