"""Durable storage for the edited history and the raw entry cache.

Both files are JSON arrays. Reads degrade to an empty list only when the file
does not exist; writes go through a temporary file in the target directory
and :func:`os.replace`, so a failed or cancelled write leaves the previous
content in place.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from pytimeflip.exceptions import TimeflipIOError, TimeflipParseError
from pytimeflip.models.entry import Entry, EntryEdit

_logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

HISTORY_ADAPTER: TypeAdapter[list[EntryEdit]] = TypeAdapter(list[EntryEdit])
ENTRIES_ADAPTER: TypeAdapter[list[Entry]] = TypeAdapter(list[Entry])


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Replace *path* with *content* without ever exposing a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def dump_json(adapter: TypeAdapter[Any], items: Sequence[BaseModel]) -> bytes:
    """Human-readable JSON for a list of models, newline terminated."""
    return adapter.dump_json(list(items), indent=2) + b"\n"


def _load(path: Path, adapter: TypeAdapter[list[M]]) -> list[M]:
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        _logger.debug("%s does not exist, starting empty", path)
        return []
    except OSError as exc:
        raise TimeflipIOError(f"Cannot read {path}: {exc}", path=path) from exc

    try:
        items = adapter.validate_json(raw)
    except ValidationError as exc:
        raise TimeflipParseError(f"Cannot parse {path}: {exc}", path=path) from exc

    items.sort(key=lambda item: item.id)  # type: ignore[attr-defined]
    seen: set[int] = set()
    for item in items:
        item_id: int = item.id  # type: ignore[attr-defined]
        if item_id in seen:
            raise TimeflipParseError(f"Cannot parse {path}: duplicate entry id {item_id}", path=path)
        seen.add(item_id)
    _logger.debug("Loaded %d entries from %s", len(items), path)
    return items


def _persist(path: Path, adapter: TypeAdapter[Any], items: Sequence[BaseModel]) -> None:
    try:
        atomic_write_bytes(path, dump_json(adapter, items))
    except OSError as exc:
        raise TimeflipIOError(f"Cannot write {path}: {exc}", path=path) from exc
    _logger.debug("Persisted %d entries to %s", len(items), path)


def load_history(path: Path) -> list[EntryEdit]:
    """Load the edited history, ascending by id; ``[]`` if the file is absent."""
    return _load(Path(path), HISTORY_ADAPTER)


def persist_history(path: Path, entries: Sequence[EntryEdit]) -> None:
    """Atomically write the edited history."""
    _persist(Path(path), HISTORY_ADAPTER, entries)


def load_entries(path: Path) -> list[Entry]:
    """Load the raw device entry cache, ascending by id; ``[]`` if absent."""
    return _load(Path(path), ENTRIES_ADAPTER)


def persist_entries(path: Path, entries: Sequence[Entry]) -> None:
    """Atomically write the raw device entry cache."""
    _persist(Path(path), ENTRIES_ADAPTER, entries)
