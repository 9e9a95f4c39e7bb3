"""Context budget: four-tier item store with a running token total."""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum

from .tokens import estimate_tokens

DEFAULT_CONTEXT_WINDOW = 200_000
DEFAULT_PRIORITY = 50
MIN_PRIORITY = 0
MAX_PRIORITY = 100
MAX_COMPACTION_HISTORY = 100


class ContentType(StrEnum):
    """Closed set of content kinds an item can carry."""

    TASK = "task"
    FILE = "file"
    ERROR = "error"
    RESPONSE = "response"
    SUMMARY = "summary"
    REFERENCE = "reference"
    SYSTEM = "system"
    METADATA = "metadata"

    @property
    def exempt_from_aging(self) -> bool:
        return self in (ContentType.SYSTEM, ContentType.TASK)

    @property
    def never_dropped(self) -> bool:
        return self is ContentType.SYSTEM


class ContentTier(StrEnum):
    """Recency buckets, warmest first."""

    HOT = "hot"
    WARM = "warm"
    COLD = "cold"
    FROZEN = "frozen"

    def colder(self) -> ContentTier:
        """Next colder tier; frozen is the floor."""
        order = list(ContentTier)
        return order[min(order.index(self) + 1, len(order) - 1)]


class SaturationLevel(StrEnum):
    OPTIMAL = "optimal"
    WARNING = "warning"
    CRITICAL = "critical"
    EMERGENCY = "emergency"


SATURATION_THRESHOLDS: dict[SaturationLevel, float] = {
    SaturationLevel.WARNING: 0.80,
    SaturationLevel.CRITICAL: 0.90,
    SaturationLevel.EMERGENCY: 0.95,
}

# Soft item-count limits; exceeding one only produces a report note.
TIER_LIMITS: dict[ContentTier, int] = {
    ContentTier.HOT: 20,
    ContentTier.WARM: 50,
    ContentTier.COLD: 100,
    ContentTier.FROZEN: 200,
}


def clamp_priority(priority: int) -> int:
    return min(MAX_PRIORITY, max(MIN_PRIORITY, int(priority)))


def new_item_id() -> str:
    """Time-sortable unique item id."""
    return f"{int(time.time() * 1000):012x}-{uuid.uuid4().hex[:12]}"


def _empty_tiers() -> dict[ContentTier, list[ContextItem]]:
    return {tier: [] for tier in ContentTier}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class ContextItem:
    """A single piece of content held in the budget."""

    id: str
    type: ContentType
    tier: ContentTier
    content: str
    tokens: int
    priority: int = DEFAULT_PRIORITY
    created_at: float = field(default_factory=time.time)
    last_accessed_at: float = field(default_factory=time.time)
    access_count: int = 1


@dataclass
class CompactionRecord:
    """One entry of the compaction log."""

    timestamp: float
    tokens_before: int
    tokens_after: int
    items_compacted: int
    items_dropped: int
    duration: float


@dataclass
class ContextBudget:
    """Token ceiling plus the items counted against it.

    ``used_tokens`` is kept equal to the sum of item tokens by every
    operation in this package; drift introduced from outside is detected by
    :func:`ctx_budget.validation.validate_budget`.
    """

    max_tokens: float
    used_tokens: int = 0
    tiers: dict[ContentTier, list[ContextItem]] = field(default_factory=_empty_tiers)
    compaction_history: list[CompactionRecord] = field(default_factory=list)
    session_start: float = field(default_factory=time.time)

    def record_compaction(self, record: CompactionRecord) -> None:
        self.compaction_history.append(record)
        if len(self.compaction_history) > MAX_COMPACTION_HISTORY:
            del self.compaction_history[:-MAX_COMPACTION_HISTORY]


# ---------------------------------------------------------------------------
# Store operations
# ---------------------------------------------------------------------------


def create_budget(max_tokens: float = DEFAULT_CONTEXT_WINDOW) -> ContextBudget:
    """Return an empty budget with the given ceiling."""
    return ContextBudget(max_tokens=max_tokens)


def add_content(
    budget: ContextBudget,
    content: str | None,
    content_type: ContentType | str,
    *,
    tier: ContentTier | str = ContentTier.HOT,
    priority: int = DEFAULT_PRIORITY,
) -> ContextItem:
    """Create an item from *content* and append it to *tier* (hot by default)."""
    text = content or ""
    now = time.time()
    item = ContextItem(
        id=new_item_id(),
        type=ContentType(content_type),
        tier=ContentTier(tier),
        content=text,
        tokens=estimate_tokens(text),
        priority=clamp_priority(priority),
        created_at=now,
        last_accessed_at=now,
    )
    budget.tiers[item.tier].append(item)
    budget.used_tokens += item.tokens
    return item


def find_item(budget: ContextBudget, item_id: str) -> ContextItem | None:
    """Locate an item in any tier without touching its access statistics."""
    for items in budget.tiers.values():
        for item in items:
            if item.id == item_id:
                return item
    return None


def get_all_items(budget: ContextBudget) -> list[ContextItem]:
    """All items, hot tier first."""
    return [item for tier in ContentTier for item in budget.tiers[tier]]


def count_by_type(budget: ContextBudget) -> dict[ContentType, int]:
    counts = {content_type: 0 for content_type in ContentType}
    for items in budget.tiers.values():
        for item in items:
            counts[item.type] += 1
    return counts


def touch_item(item: ContextItem, now: float | None = None) -> None:
    """Count one access; ``last_accessed_at`` never moves backwards."""
    item.access_count += 1
    item.last_accessed_at = max(item.last_accessed_at, time.time() if now is None else now)


def access_item(budget: ContextBudget, item_id: str) -> ContextItem | None:
    """Record an access; returns ``None`` when the id is unknown."""
    item = find_item(budget, item_id)
    if item is None:
        return None
    touch_item(item)
    return item


def remove_item(budget: ContextBudget, item_id: str) -> bool:
    """Remove an item from whichever tier holds it."""
    for items in budget.tiers.values():
        for index, item in enumerate(items):
            if item.id == item_id:
                del items[index]
                budget.used_tokens -= item.tokens
                return True
    return False


def move_to_tier(budget: ContextBudget, item_id: str, tier: ContentTier | str) -> bool:
    """Relocate an item; the token total is unaffected."""
    target = ContentTier(tier)
    for items in budget.tiers.values():
        for index, item in enumerate(items):
            if item.id == item_id:
                if item.tier is not target:
                    del items[index]
                    item.tier = target
                    budget.tiers[target].append(item)
                return True
    return False


# ---------------------------------------------------------------------------
# Saturation
# ---------------------------------------------------------------------------


def calculate_saturation(budget: ContextBudget) -> float:
    """Fraction of the ceiling in use.

    A ceiling of zero or below reads as fully saturated, an unbounded one as
    empty.  A NaN token total also reads as fully saturated.
    """
    if math.isinf(budget.max_tokens) and budget.max_tokens > 0:
        return 0.0
    if not budget.max_tokens > 0 or math.isnan(budget.used_tokens):
        return 1.0
    return budget.used_tokens / budget.max_tokens


def get_saturation_level(saturation: float) -> SaturationLevel:
    if saturation < SATURATION_THRESHOLDS[SaturationLevel.WARNING]:
        return SaturationLevel.OPTIMAL
    if saturation < SATURATION_THRESHOLDS[SaturationLevel.CRITICAL]:
        return SaturationLevel.WARNING
    if saturation < SATURATION_THRESHOLDS[SaturationLevel.EMERGENCY]:
        return SaturationLevel.CRITICAL
    return SaturationLevel.EMERGENCY
