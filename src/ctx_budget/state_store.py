"""Resilient JSON state files under ``<project>/.ctxbudget/``.

Reads never raise: a missing, empty, unreadable or corrupt file yields the
record's defaults.  Parsing goes through pydantic models that keep only the
fields they declare and fall back to a field's default when its stored value
has the wrong shape, so one bad field never costs the rest of the record.

Writes are atomic (temp file in the same directory, then ``os.replace``).
Stores configured with merge fields re-read the file before writing and
union those lists by id, so concurrent writers do not lose each other's
entries.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Generic, TypeVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .telemetry import trace_persistence

logger = logging.getLogger(__name__)

STATE_DIR = ".ctxbudget"


def _only_objects(value: Any) -> Any:
    if isinstance(value, list):
        return [entry for entry in value if isinstance(entry, (dict, BaseModel))]
    return value


T = TypeVar("T")

# List field that silently skips entries which are not JSON objects.
Entries = Annotated[list[T], BeforeValidator(_only_objects)]


class StateRecord(BaseModel):
    """Base for persisted records: camelCase on disk, per-field fallback."""

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_error(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        try:
            return handler(value)
        except ValidationError:
            if info.field_name is None:
                raise
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)

    def to_json(self) -> str:
        # json.dumps keeps non-finite floats (an unbounded ceiling) as Infinity.
        return json.dumps(self.model_dump(by_alias=True), indent=2)


ModelT = TypeVar("ModelT", bound=StateRecord)


@dataclass(frozen=True)
class MergeField:
    """A list field unioned with the on-disk copy on every save."""

    name: str
    cap: int
    id_key: str = "id"
    recency_key: str = "timestamp"


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* so readers see either the old file or the new one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def read_json_object(path: Path) -> dict[str, Any] | None:
    """Return the JSON object stored at *path*, or None if there is none."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read state file %s, using defaults: %s", path, exc)
        return None
    if not raw.strip():
        return None
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        logger.warning("Corrupt state file %s, using defaults: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning(
            "State file %s holds %s instead of an object, using defaults",
            path,
            type(data).__name__,
        )
        return None
    return data


def merge_entries(local: list[Any], remote: list[Any], field: MergeField) -> list[Any]:
    """Union two entry lists by id (local wins), newest first, capped."""
    merged = {getattr(entry, field.id_key): entry for entry in remote}
    merged.update((getattr(entry, field.id_key), entry) for entry in local)
    ordered = sorted(
        merged.values(), key=lambda entry: getattr(entry, field.recency_key), reverse=True
    )
    return ordered[: field.cap]


class JsonStateStore(Generic[ModelT]):
    """One JSON file holding a single *model* record."""

    def __init__(
        self,
        project_path: str | Path,
        filename: str,
        model: type[ModelT],
        merge_fields: Sequence[MergeField] = (),
    ) -> None:
        self._path = Path(project_path) / STATE_DIR / filename
        self._model = model
        self._merge_fields = tuple(merge_fields)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ModelT:
        with trace_persistence("load", str(self._path)):
            data = read_json_object(self._path)
            if data is None:
                return self._model()
            try:
                return self._model.model_validate(data)
            except (ValidationError, RecursionError) as exc:
                logger.warning("Invalid state in %s, using defaults: %s", self._path, exc)
                return self._model()

    def save(self, record: ModelT) -> bool:
        """Persist *record*; returns False (and logs) if the write fails."""
        with trace_persistence("save", str(self._path)):
            if self._merge_fields:
                record = self._merge_with_disk(record)
            return self._write(record)

    def clear(self) -> ModelT:
        """Overwrite the file with a default record and return it."""
        fresh = self._model()
        with trace_persistence("clear", str(self._path)):
            self._write(fresh)
        return fresh

    def _merge_with_disk(self, record: ModelT) -> ModelT:
        on_disk = self.load()
        update = {
            field.name: merge_entries(
                getattr(record, field.name), getattr(on_disk, field.name), field
            )
            for field in self._merge_fields
        }
        return record.model_copy(update=update)

    def _write(self, record: ModelT) -> bool:
        try:
            atomic_write_text(self._path, record.to_json())
        except OSError as exc:
            logger.error("Failed to write state file %s: %s", self._path, exc)
            return False
        return True
