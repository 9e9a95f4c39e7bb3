"""Time-based demotion of idle items to colder tiers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .budget import ContentTier, ContextBudget, ContextItem
from .telemetry import trace_aging

DEFAULT_HOT_MAX_AGE = 300.0
DEFAULT_WARM_MAX_AGE = 1800.0
DEFAULT_COLD_MAX_AGE = 7200.0


@dataclass
class AgingResult:
    """Outcome of one aging pass."""

    aged: int = 0
    moved_to: dict[ContentTier, int] = field(
        default_factory=lambda: {ContentTier.WARM: 0, ContentTier.COLD: 0, ContentTier.FROZEN: 0}
    )


def _exceeds(idle: float, max_age: float) -> bool:
    # A non-positive threshold ages everything, even items touched this instant.
    return max_age <= 0 or idle > max_age


def age_items(
    budget: ContextBudget,
    *,
    hot_max_age: float = DEFAULT_HOT_MAX_AGE,
    warm_max_age: float = DEFAULT_WARM_MAX_AGE,
    cold_max_age: float = DEFAULT_COLD_MAX_AGE,
    now: float | None = None,
) -> AgingResult:
    """Demote items idle longer than their tier's max age.

    An item keeps sliding one tier at a time while it is older than the max
    age of the tier it landed in, so a second pass with the same clock finds
    nothing left to do.  System and task items never age.
    """
    max_ages = {
        ContentTier.HOT: hot_max_age,
        ContentTier.WARM: warm_max_age,
        ContentTier.COLD: cold_max_age,
    }
    clock = time.time() if now is None else now
    result = AgingResult()

    with trace_aging(sum(len(items) for items in budget.tiers.values())) as span:
        moving: list[ContextItem] = []
        for tier in (ContentTier.HOT, ContentTier.WARM, ContentTier.COLD):
            kept: list[ContextItem] = []
            for item in budget.tiers[tier]:
                idle = clock - item.last_accessed_at
                if item.type.exempt_from_aging or not _exceeds(idle, max_ages[tier]):
                    kept.append(item)
                    continue
                destination = tier.colder()
                while destination is not ContentTier.FROZEN and _exceeds(
                    idle, max_ages[destination]
                ):
                    destination = destination.colder()
                item.tier = destination
                moving.append(item)
            budget.tiers[tier] = kept

        for item in moving:
            budget.tiers[item.tier].append(item)
            result.moved_to[item.tier] += 1
        result.aged = len(moving)
        span.set_attribute("budget.items_aged", result.aged)

    return result
