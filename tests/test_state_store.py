"""Tests for the generic JSON state store and its merge-on-save."""

from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pydantic import Field

from ctx_budget.state_store import (
    STATE_DIR,
    Entries,
    JsonStateStore,
    MergeField,
    StateRecord,
    atomic_write_text,
    merge_entries,
)


class Note(StateRecord):
    id: str = ""
    text: str = ""
    timestamp: float = 0.0


class Notebook(StateRecord):
    owner: str = "nobody"
    page_count: int = 0
    notes: Entries[Note] = Field(default_factory=list)


def _store(project: Path, cap: int = 10) -> JsonStateStore[Notebook]:
    return JsonStateStore(project, "notebook.json", Notebook, merge_fields=[MergeField("notes", cap)])


def test_path_is_under_state_dir(tmp_path: Path) -> None:
    assert _store(tmp_path).path == tmp_path / STATE_DIR / "notebook.json"


def test_load_missing_returns_defaults(tmp_path: Path) -> None:
    record = _store(tmp_path).load()
    assert record == Notebook()


def test_round_trip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = Notebook(owner="ada", page_count=3, notes=[Note(id="a", text="hi", timestamp=1.0)])
    assert store.save(record) is True
    assert store.load() == record


def test_saved_keys_are_camel_case(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Notebook(page_count=2))
    assert "pageCount" in json.loads(store.path.read_text(encoding="utf-8"))


def test_snake_case_keys_are_accepted(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text('{"page_count": 7}', encoding="utf-8")
    assert store.load().page_count == 7


def test_bad_field_falls_back_alone(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text(
        json.dumps({"owner": ["not", "a", "string"], "pageCount": 4, "notes": [1, {"id": "n"}]}),
        encoding="utf-8",
    )
    record = store.load()
    assert record.owner == "nobody"
    assert record.page_count == 4
    assert [note.id for note in record.notes] == ["n"]


def test_invalid_utf8_loads_default(tmp_path: Path, caplog) -> None:
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_bytes(b"\xff\xfe\x00garbage")
    with caplog.at_level(logging.WARNING, logger="ctx_budget.state_store"):
        assert store.load() == Notebook()
    assert caplog.records


def test_merge_keeps_entries_from_both_writers(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = store.load()
    second = store.load()
    first.notes.append(Note(id="a", text="from first", timestamp=1.0))
    second.notes.append(Note(id="b", text="from second", timestamp=2.0))
    second.owner = "second"

    store.save(first)
    store.save(second)

    merged = store.load()
    assert [note.id for note in merged.notes] == ["b", "a"]
    assert merged.owner == "second"


def test_merge_in_memory_wins_on_duplicate_id(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Notebook(notes=[Note(id="a", text="old", timestamp=1.0)]))
    store.save(Notebook(notes=[Note(id="a", text="new", timestamp=1.0)]))
    notes = store.load().notes
    assert len(notes) == 1
    assert notes[0].text == "new"


def test_merge_caps_newest_first(tmp_path: Path) -> None:
    store = _store(tmp_path, cap=3)
    store.save(Notebook(notes=[Note(id=f"d{i}", timestamp=float(i)) for i in range(3)]))
    store.save(Notebook(notes=[Note(id=f"m{i}", timestamp=float(i) + 0.5) for i in range(3)]))
    assert [note.id for note in store.load().notes] == ["m2", "d2", "m1"]


def test_merge_entries_function() -> None:
    field = MergeField("notes", cap=10)
    local = [Note(id="x", text="local", timestamp=5.0)]
    remote = [Note(id="x", text="remote", timestamp=9.0), Note(id="y", timestamp=1.0)]
    merged = merge_entries(local, remote, field)
    assert [(n.id, n.text) for n in merged] == [("x", "local"), ("y", "")]


def test_clear_ignores_on_disk_entries(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Notebook(notes=[Note(id="a", timestamp=1.0)]))
    assert store.clear() == Notebook()
    assert store.load().notes == []


def test_atomic_write_replaces_content(tmp_path: Path) -> None:
    target = tmp_path / "sub" / "file.json"
    atomic_write_text(target, "one")
    atomic_write_text(target, "two")
    assert target.read_text(encoding="utf-8") == "two"
    assert [p.name for p in target.parent.iterdir()] == ["file.json"]


def test_concurrent_thread_writers_leave_a_valid_file(tmp_path: Path) -> None:
    def writer(n: int) -> bool:
        store = _store(tmp_path, cap=100)
        record = store.load()
        record.notes.append(Note(id=f"w{n}", timestamp=float(n)))
        return store.save(record)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(writer, range(40)))

    assert all(results)
    notes = _store(tmp_path, cap=100).load().notes
    assert 1 <= len(notes) <= 40
    assert len({note.id for note in notes}) == len(notes)
    assert [p.name for p in (tmp_path / STATE_DIR).iterdir()] == ["notebook.json"]
