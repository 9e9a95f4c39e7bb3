"""Tests for the compaction engine."""

from __future__ import annotations

import math

from ctx_budget.budget import (
    ContentTier,
    ContentType,
    add_content,
    calculate_saturation,
    count_by_type,
    create_budget,
    find_item,
)
from ctx_budget.compaction import compact_budget
from ctx_budget.validation import validate_budget


def _fill(budget, tier, n, chars=400, content_type="file", priority=50):
    return [
        add_content(budget, f"{i}:" + "x" * chars, content_type, tier=tier, priority=priority)
        for i in range(n)
    ]


def test_under_target_is_a_no_op_but_is_recorded() -> None:
    budget = create_budget(1000)
    _fill(budget, "warm", 1)
    result = compact_budget(budget, target_saturation=0.6)
    assert result.success is True
    assert result.tokens_saved == 0
    assert result.items_compacted == 0
    assert result.items_dropped == 0
    assert len(budget.compaction_history) == 1
    entry = budget.compaction_history[0]
    assert entry.tokens_before == entry.tokens_after


def test_end_to_end_warm_summarization_reaches_target() -> None:
    budget = create_budget(1000)
    for _ in range(3):
        add_content(budget, "x" * 1600, "file", tier="warm")
    assert budget.used_tokens == 1200
    budget.max_tokens = 4000
    assert calculate_saturation(budget) == 0.3

    result = compact_budget(budget, target_saturation=0.1)
    assert result.success is True
    assert budget.used_tokens <= 400
    assert result.items_compacted == 3
    assert result.items_dropped == 0
    assert len(budget.tiers[ContentTier.WARM]) == 3
    entry = budget.compaction_history[-1]
    assert entry.tokens_after <= entry.tokens_before
    assert validate_budget(budget).valid


def test_end_to_end_small_window() -> None:
    budget = create_budget(1000)
    for _ in range(3):
        add_content(budget, "x" * 1600, "file", tier="warm")
    result = compact_budget(budget, target_saturation=0.1)
    assert budget.used_tokens <= 100
    assert result.success is True
    assert len(budget.compaction_history) == 1
    assert validate_budget(budget).valid


def test_frozen_dropped_before_cold() -> None:
    budget = create_budget(1000)
    frozen = _fill(budget, "frozen", 2)
    cold = _fill(budget, "cold", 2)
    result = compact_budget(budget, target_saturation=0.25)
    assert result.items_dropped == 2
    assert all(find_item(budget, item.id) is None for item in frozen)
    assert all(find_item(budget, item.id) is not None for item in cold)


def test_drop_order_is_priority_then_oldest_access() -> None:
    budget = create_budget(1000)
    low_recent = add_content(budget, "a" * 400, "file", tier="cold", priority=10)
    low_old = add_content(budget, "b" * 400, "file", tier="cold", priority=10)
    high = add_content(budget, "c" * 400, "file", tier="cold", priority=90)
    low_recent.last_accessed_at = 2000.0
    low_old.last_accessed_at = 1000.0
    high.last_accessed_at = 500.0

    compact_budget(budget, target_saturation=0.25)
    assert find_item(budget, low_old.id) is None
    assert find_item(budget, low_recent.id) is low_recent

    compact_budget(budget, target_saturation=0.15)
    assert find_item(budget, low_recent.id) is None
    assert find_item(budget, high.id) is high


def test_system_items_are_never_dropped_or_summarized() -> None:
    budget = create_budget(100)
    system = add_content(budget, "s" * 800, "system", tier="cold")
    warm_system = add_content(budget, "w" * 800, "system", tier="warm")
    result = compact_budget(budget, target_saturation=0.1)
    assert result.success is False
    assert find_item(budget, system.id) is system
    assert warm_system.content == "w" * 800
    assert budget.used_tokens == system.tokens + warm_system.tokens


def test_last_error_survives() -> None:
    budget = create_budget(100)
    errors = _fill(budget, "frozen", 3, content_type="error")
    _fill(budget, "cold", 2)
    compact_budget(budget, target_saturation=0.0)
    remaining = count_by_type(budget)
    assert remaining[ContentType.ERROR] == 1
    assert remaining[ContentType.FILE] == 0
    assert sum(find_item(budget, e.id) is not None for e in errors) == 1


def test_compaction_never_increases_usage() -> None:
    budget = create_budget(1000)
    _fill(budget, "warm", 3)
    _fill(budget, "cold", 3)
    _fill(budget, "frozen", 3)
    previous = budget.used_tokens
    for target in (0.9, 0.7, 0.5, 0.3, 0.1, 0.0):
        compact_budget(budget, target_saturation=target)
        assert budget.used_tokens <= previous
        previous = budget.used_tokens
        assert validate_budget(budget).valid


def test_custom_summarizer_is_used_and_oversized_output_ignored() -> None:
    budget = create_budget(100)
    item = add_content(budget, "y" * 800, "response", tier="warm")
    calls: list[int] = []

    def shout(content: str, max_chars: int) -> str:
        calls.append(max_chars)
        return content * 2

    result = compact_budget(budget, target_saturation=0.5, summarizer=shout)
    assert calls
    assert result.items_compacted == 0
    assert item.content == "y" * 800


def test_custom_summarizer_replaces_content() -> None:
    budget = create_budget(100)
    item = add_content(budget, "z" * 800, "response", tier="warm")
    result = compact_budget(budget, target_saturation=0.5, summarizer=lambda c, n: "short")
    assert result.items_compacted == 1
    assert item.content == "short"
    assert item.tokens == 2
    assert budget.used_tokens == 2


def test_hot_items_are_untouched() -> None:
    budget = create_budget(100)
    item = add_content(budget, "h" * 800, "file")
    result = compact_budget(budget, target_saturation=0.1)
    assert result.success is False
    assert find_item(budget, item.id) is item


def test_zero_ceiling_drops_what_it_can() -> None:
    budget = create_budget(0)
    _fill(budget, "frozen", 2)
    result = compact_budget(budget, target_saturation=0.5)
    assert result.items_dropped == 2
    assert budget.used_tokens == 0


def test_unbounded_ceiling_needs_nothing() -> None:
    budget = create_budget(math.inf)
    _fill(budget, "frozen", 2)
    result = compact_budget(budget)
    assert result.success is True
    assert result.items_dropped == 0


def test_history_is_capped_at_one_hundred() -> None:
    budget = create_budget(1000)
    for _ in range(120):
        compact_budget(budget)
    assert len(budget.compaction_history) == 100


CODE_LINE = "if (a[i] != b[j]) { x = y; }\n"


def test_symbol_dense_warm_content_reaches_target() -> None:
    budget = create_budget(1000)
    items = [add_content(budget, CODE_LINE * 42, "file", tier="warm") for _ in range(3)]
    assert all(item.tokens == 406 for item in items)

    result = compact_budget(budget, target_saturation=0.1)
    assert result.success is True
    assert result.items_compacted == 3
    assert result.items_dropped == 0
    assert budget.used_tokens <= 100
    assert all(item.content.endswith("...") for item in items)
    assert validate_budget(budget).valid


def test_summary_denser_than_its_source_is_retried_smaller() -> None:
    budget = create_budget(1000)
    item = add_content(budget, "x" * 1600, "response", tier="warm")
    calls: list[int] = []

    def braces(content: str, max_chars: int) -> str:
        calls.append(max_chars)
        return "{" * max_chars

    result = compact_budget(budget, target_saturation=0.1, summarizer=braces)
    assert calls == [400, 298]
    assert item.tokens == 100
    assert result.success is True
