"""Phase state and tool-call tracker stores.

Both live beside the budget under ``.ctxbudget/`` and share its load
fallback.  Their history-like lists are merged with the on-disk copy on
every save, so two processes appending at the same time keep both entries.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import Field

from .state_store import Entries, JsonStateStore, MergeField, StateRecord

PHASE_FILE = "state.json"
TRACKER_FILE = "tracker.json"

MAX_PHASE_HISTORY = 500
MAX_TOOL_CALLS = 50
MAX_ERROR_MEMORY = 50


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _entry_id(prefix: str = "") -> str:
    return f"{prefix}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


# ---------------------------------------------------------------------------
# Phase state
# ---------------------------------------------------------------------------


class Phase(StateRecord):
    phase: str = "IDLE"
    step: str | None = None


class PhaseHistoryEntry(StateRecord):
    """The phase that was left, and when."""

    id: str = Field(default_factory=_entry_id)
    phase: Phase = Field(default_factory=Phase)
    timestamp: str = Field(default_factory=_now_iso)


class DocsFlags(StateRecord):
    brainlift: bool = False
    prd: bool = False
    gameplan: bool = False


class PhaseState(StateRecord):
    current: Phase = Field(default_factory=Phase)
    history: Entries[PhaseHistoryEntry] = Field(default_factory=list)
    started_at: str = Field(default_factory=_now_iso)
    docs: DocsFlags = Field(default_factory=DocsFlags)


def phase_store(project_path: str | Path) -> JsonStateStore[PhaseState]:
    return JsonStateStore(
        project_path,
        PHASE_FILE,
        PhaseState,
        merge_fields=[MergeField("history", MAX_PHASE_HISTORY)],
    )


def load_phase_state(project_path: str | Path) -> PhaseState:
    return phase_store(project_path).load()


def save_phase_state(project_path: str | Path, state: PhaseState) -> bool:
    return phase_store(project_path).save(state)


def set_phase(project_path: str | Path, phase: str, step: str | None = None) -> PhaseState:
    """Move to *phase*/*step*, recording the phase being left in history."""
    state = load_phase_state(project_path)
    state.history.insert(0, PhaseHistoryEntry(phase=state.current))
    del state.history[MAX_PHASE_HISTORY:]
    state.current = Phase(phase=phase, step=step)
    save_phase_state(project_path, state)
    return state


# ---------------------------------------------------------------------------
# Tool-call tracker
# ---------------------------------------------------------------------------


class ToolCall(StateRecord):
    id: str = Field(default_factory=_entry_id)
    tool: str = ""
    timestamp: float = Field(default_factory=time.time)
    args: dict[str, Any] = Field(default_factory=dict)


class FixAttempt(StateRecord):
    approach: str = ""
    timestamp: float = Field(default_factory=time.time)
    worked: bool = False


class ErrorEntry(StateRecord):
    id: str = Field(default_factory=lambda: _entry_id("err-"))
    error: str = ""
    file: str | None = None
    line: int | None = None
    first_seen: float = Field(default_factory=time.time)
    last_seen: float = Field(default_factory=time.time)
    fix_attempts: Entries[FixAttempt] = Field(default_factory=list)
    resolved: bool = False


class TrackerState(StateRecord):
    last_updated: str = Field(default_factory=_now_iso)
    recent_tool_calls: Entries[ToolCall] = Field(default_factory=list)
    error_memory: Entries[ErrorEntry] = Field(default_factory=list)
    current_task: str | None = None


def tracker_store(project_path: str | Path) -> JsonStateStore[TrackerState]:
    return JsonStateStore(
        project_path,
        TRACKER_FILE,
        TrackerState,
        merge_fields=[
            MergeField("recent_tool_calls", MAX_TOOL_CALLS),
            MergeField("error_memory", MAX_ERROR_MEMORY, recency_key="last_seen"),
        ],
    )


def load_tracker(project_path: str | Path) -> TrackerState:
    return tracker_store(project_path).load()


def save_tracker(project_path: str | Path, tracker: TrackerState) -> bool:
    tracker.last_updated = _now_iso()
    return tracker_store(project_path).save(tracker)


def track_tool_call(
    project_path: str | Path, tool: str, args: dict[str, Any] | None = None
) -> ToolCall:
    tracker = load_tracker(project_path)
    call = ToolCall(tool=tool, args=args or {})
    tracker.recent_tool_calls.insert(0, call)
    del tracker.recent_tool_calls[MAX_TOOL_CALLS:]
    save_tracker(project_path, tracker)
    return call


def record_error(
    project_path: str | Path,
    error: str,
    file: str | None = None,
    line: int | None = None,
) -> ErrorEntry:
    """Remember *error*; a repeat of an unresolved one only bumps ``last_seen``."""
    tracker = load_tracker(project_path)
    for entry in tracker.error_memory:
        if entry.error == error and entry.file == file and not entry.resolved:
            entry.last_seen = max(entry.last_seen, time.time())
            save_tracker(project_path, tracker)
            return entry

    entry = ErrorEntry(error=error, file=file, line=line)
    tracker.error_memory.insert(0, entry)
    del tracker.error_memory[MAX_ERROR_MEMORY:]
    save_tracker(project_path, tracker)
    return entry


def record_fix_attempt(
    project_path: str | Path, error_id: str, approach: str, worked: bool
) -> bool:
    """Log a fix attempt; a working one resolves the error.  False if unknown."""
    tracker = load_tracker(project_path)
    for entry in tracker.error_memory:
        if entry.id == error_id:
            entry.fix_attempts.append(FixAttempt(approach=approach, worked=worked))
            entry.resolved = entry.resolved or worked
            entry.last_seen = max(entry.last_seen, time.time())
            save_tracker(project_path, tracker)
            return True
    return False


def get_unresolved_errors(project_path: str | Path) -> list[ErrorEntry]:
    return [entry for entry in load_tracker(project_path).error_memory if not entry.resolved]
