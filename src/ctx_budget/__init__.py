"""ctx-budget: tiered, saturation-aware context budget for coding agents."""

from __future__ import annotations

from .aging import AgingResult, age_items
from .assembly import AssembledContext, assemble_context
from .budget import (
    DEFAULT_CONTEXT_WINDOW,
    SATURATION_THRESHOLDS,
    TIER_LIMITS,
    CompactionRecord,
    ContentTier,
    ContentType,
    ContextBudget,
    ContextItem,
    SaturationLevel,
    access_item,
    add_content,
    calculate_saturation,
    count_by_type,
    create_budget,
    find_item,
    get_all_items,
    get_saturation_level,
    move_to_tier,
    remove_item,
)
from .compaction import CompactionResult, compact_budget
from .config import BudgetConfig
from .persistence import clear_budget, load_budget, save_budget
from .report import BudgetStats, SaturationReport, get_budget_stats, get_saturation_report
from .state_store import JsonStateStore, MergeField
from .state_stores import (
    ErrorEntry,
    Phase,
    PhaseState,
    ToolCall,
    TrackerState,
    get_unresolved_errors,
    load_phase_state,
    load_tracker,
    record_error,
    record_fix_attempt,
    save_phase_state,
    save_tracker,
    set_phase,
    track_tool_call,
)
from .summarizers import OllamaSummarizer, Summarizer, key_point_summary, truncate_summary
from .telemetry import BudgetTracer, TelemetryConfig, configure_tracing
from .tokens import estimate_structured_tokens, estimate_tokens
from .validation import RepairResult, ValidationResult, repair_budget, validate_budget

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_CONTEXT_WINDOW",
    "SATURATION_THRESHOLDS",
    "TIER_LIMITS",
    "AgingResult",
    "AssembledContext",
    "BudgetConfig",
    "BudgetStats",
    "BudgetTracer",
    "CompactionRecord",
    "CompactionResult",
    "ContentTier",
    "ContentType",
    "ContextBudget",
    "ContextItem",
    "ErrorEntry",
    "JsonStateStore",
    "MergeField",
    "OllamaSummarizer",
    "Phase",
    "PhaseState",
    "RepairResult",
    "SaturationLevel",
    "SaturationReport",
    "Summarizer",
    "TelemetryConfig",
    "ToolCall",
    "TrackerState",
    "ValidationResult",
    "__version__",
    "access_item",
    "add_content",
    "age_items",
    "assemble_context",
    "calculate_saturation",
    "clear_budget",
    "compact_budget",
    "configure_tracing",
    "count_by_type",
    "create_budget",
    "estimate_structured_tokens",
    "estimate_tokens",
    "find_item",
    "get_all_items",
    "get_budget_stats",
    "get_saturation_level",
    "get_saturation_report",
    "get_unresolved_errors",
    "key_point_summary",
    "load_budget",
    "load_phase_state",
    "load_tracker",
    "move_to_tier",
    "record_error",
    "record_fix_attempt",
    "remove_item",
    "repair_budget",
    "save_budget",
    "save_phase_state",
    "save_tracker",
    "set_phase",
    "track_tool_call",
    "truncate_summary",
    "validate_budget",
]
