"""Runtime configuration read from ``CTX_BUDGET_*`` environment variables."""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass

from .aging import DEFAULT_COLD_MAX_AGE, DEFAULT_HOT_MAX_AGE, DEFAULT_WARM_MAX_AGE
from .budget import DEFAULT_CONTEXT_WINDOW
from .compaction import DEFAULT_TARGET_SATURATION
from .report import DEFAULT_STALE_AFTER

_UNBOUNDED = frozenset({"inf", "infinity", "unbounded"})
_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _float_var(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from None
    if math.isnan(value):
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg)
    return value


def _max_tokens_var(env: Mapping[str, str], name: str) -> float:
    raw = env.get(name, "").strip()
    if raw.lower() in _UNBOUNDED:
        return math.inf
    if not raw:
        return DEFAULT_CONTEXT_WINDOW
    try:
        return int(raw)
    except ValueError:
        msg = f"{name} must be an integer or 'unbounded', got {raw!r}"
        raise ValueError(msg) from None


@dataclass
class BudgetConfig:
    """Settings shared by the CLI and library callers."""

    max_tokens: float = DEFAULT_CONTEXT_WINDOW
    target_saturation: float = DEFAULT_TARGET_SATURATION
    hot_max_age: float = DEFAULT_HOT_MAX_AGE
    warm_max_age: float = DEFAULT_WARM_MAX_AGE
    cold_max_age: float = DEFAULT_COLD_MAX_AGE
    stale_after: float = DEFAULT_STALE_AFTER
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> BudgetConfig:
        """Build a config from *env* (default ``os.environ``).

        Raises:
            ValueError: If a variable is set to a value that cannot be used.
        """
        env = os.environ if env is None else env
        target = _float_var(env, "CTX_BUDGET_TARGET_SATURATION", DEFAULT_TARGET_SATURATION)
        if not 0 <= target <= 1:
            msg = f"CTX_BUDGET_TARGET_SATURATION must be between 0 and 1, got {target}"
            raise ValueError(msg)

        log_level = env.get("CTX_BUDGET_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"
        if log_level not in _LOG_LEVELS:
            msg = (
                f"Unknown log level '{log_level}'. "
                f"Valid values for CTX_BUDGET_LOG_LEVEL: {', '.join(sorted(_LOG_LEVELS))}"
            )
            raise ValueError(msg)

        return cls(
            max_tokens=_max_tokens_var(env, "CTX_BUDGET_MAX_TOKENS"),
            target_saturation=target,
            hot_max_age=_float_var(env, "CTX_BUDGET_HOT_MAX_AGE", DEFAULT_HOT_MAX_AGE),
            warm_max_age=_float_var(env, "CTX_BUDGET_WARM_MAX_AGE", DEFAULT_WARM_MAX_AGE),
            cold_max_age=_float_var(env, "CTX_BUDGET_COLD_MAX_AGE", DEFAULT_COLD_MAX_AGE),
            stale_after=_float_var(env, "CTX_BUDGET_STALE_AFTER", DEFAULT_STALE_AFTER),
            log_level=log_level,
        )
