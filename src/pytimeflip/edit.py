"""Edit session: export entries, run an editor, validate and commit.

The session moves through :class:`EditState` in one direction only::

    IDLE -> EXPORTING -> AWAITING_EDITOR -> RELOADING -> VALIDATING -> COMMITTED
                 \\              \\               \\             \\
                  +--------------+---------------+-------------+--> FAILED

The scratch file handle is closed before the editor starts and the file is
reopened for reading after it exits; the editor writes to the file on its own
and nothing written by it may be read through a stale buffer. When the
session fails after the scratch file was written, the file is kept so the
edits can be retried with ``resume=``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
import tempfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import tzinfo
from enum import StrEnum
from pathlib import Path

from pydantic import ValidationError

from pytimeflip.config import TimeflipConfig
from pytimeflip.device import DeviceSession
from pytimeflip.exceptions import (
    TimeflipConfigError,
    TimeflipEditorError,
    TimeflipIOError,
    TimeflipParseError,
    TimeflipValidationError,
)
from pytimeflip.history.merge import merge, next_start_id
from pytimeflip.history.store import HISTORY_ADAPTER, dump_json, load_history, persist_history
from pytimeflip.models.entry import EntryEdit

_logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "timeflip-edit-"
SCRATCH_SUFFIX = ".json"


class EditState(StrEnum):
    IDLE = "idle"
    EXPORTING = "exporting"
    AWAITING_EDITOR = "awaiting_editor"
    RELOADING = "reloading"
    VALIDATING = "validating"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class EditResult:
    """Outcome of a committed session."""

    state: EditState
    committed: tuple[EntryEdit, ...]
    added: int
    replaced: int
    scratch_path: Path | None


def select_range(entries: Iterable[EntryEdit], start_id: int, end_id: int | None = None) -> list[EntryEdit]:
    """Entries with ``start_id <= id <= end_id``; no *end_id* means unbounded."""
    return [entry for entry in entries if entry.id >= start_id and (end_id is None or entry.id <= end_id)]


def export_text(entries: Sequence[EntryEdit], tz: tzinfo | None = None) -> str:
    """Serialize *entries* for editing, with times shown in *tz*.

    The output only depends on the entries and the zone, so exporting the
    same selection twice gives identical text.
    """
    localized = [
        entry.model_copy(
            update={
                "start_time": entry.start_time.astimezone(tz),
                "end_time": entry.end_time.astimezone(tz),
            }
        )
        for entry in entries
    ]
    return dump_json(HISTORY_ADAPTER, localized).decode("utf-8")


def parse_text(text: str, *, path: Path | None = None) -> list[EntryEdit]:
    """Parse edited text back into entries (times normalized to UTC)."""
    try:
        return HISTORY_ADAPTER.validate_json(text)
    except ValidationError as exc:
        where = f" in {path}" if path is not None else ""
        raise TimeflipParseError(f"Edited entries{where} are not valid: {exc}", path=path) from exc


def validate_edits(
    edited: Sequence[EntryEdit],
    allowed_ids: set[int],
    *,
    path: Path | None = None,
) -> list[EntryEdit]:
    """Check an edited batch against the exported selection.

    Returns the batch sorted by id.
    """
    seen: set[int] = set()
    duplicates: set[int] = set()
    for entry in edited:
        if entry.id in seen:
            duplicates.add(entry.id)
        seen.add(entry.id)
    if duplicates:
        raise TimeflipValidationError(f"Duplicate entry ids in edit: {sorted(duplicates)}", path=path)

    foreign = seen - allowed_ids
    if foreign:
        raise TimeflipValidationError(
            f"Entry ids {sorted(foreign)} were not part of the edited selection",
            path=path,
        )
    return sorted(edited, key=lambda e: e.id)


def apply_edits(history: Sequence[EntryEdit], edited: Sequence[EntryEdit]) -> tuple[list[EntryEdit], int, int]:
    """Append *edited* to *history*.

    New ids are appended; ids already present are replaced by their edited
    version. Nothing else in *history* changes. Returns the new history and
    the number of added and replaced entries.
    """
    by_id = {entry.id: entry for entry in history}
    added = 0
    replaced = 0
    for entry in edited:
        if entry.id in by_id:
            replaced += 1
        else:
            added += 1
        by_id[entry.id] = entry
    return [by_id[key] for key in sorted(by_id)], added, replaced


class EditSession:
    """One ``history edit`` run.

    Parameters
    ----------
    config
        Facet names, id numbering, editor settings.
    device
        Source of entries newer than the stored history.
    history_file
        Edited history to extend.
    editor
        Editor command line; falls back to ``config.editor``.
    scratch_dir
        Where scratch files are created; falls back to ``config.scratch_dir``
        and then to the system temp dir.
    tz
        Zone used for times in the scratch file. ``None`` is the system
        local zone.
    """

    def __init__(
        self,
        config: TimeflipConfig,
        device: DeviceSession,
        *,
        history_file: Path,
        editor: str | None = None,
        scratch_dir: Path | None = None,
        tz: tzinfo | None = None,
    ) -> None:
        self._config = config
        self._device = device
        self._history_file = Path(history_file)
        self._editor = config.resolve_editor(editor)
        self._scratch_dir = scratch_dir if scratch_dir is not None else config.scratch_dir
        self._tz = tz
        self._state = EditState.IDLE
        self._scratch_path: Path | None = None

    @property
    def state(self) -> EditState:
        return self._state

    @property
    def scratch_path(self) -> Path | None:
        return self._scratch_path

    def _transition(self, state: EditState) -> None:
        _logger.debug("Edit session %s -> %s", self._state, state)
        self._state = state

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        start_id: int | None = None,
        end_id: int | None = None,
        *,
        resume: Path | None = None,
    ) -> EditResult:
        """Run the whole session.

        ``start_id`` defaults to the first id missing from the history, so a
        plain run edits exactly the newly fetched entries. With *resume* the
        export step is skipped and the editor reopens an existing scratch file.
        """
        if self._state != EditState.IDLE:
            raise RuntimeError(f"Edit session already used (state {self._state})")
        try:
            return await self._run(start_id, end_id, resume)
        except BaseException:
            self._transition(EditState.FAILED)
            if self._scratch_path is not None and self._scratch_path.exists():
                _logger.warning("Edits kept in %s", self._scratch_path)
            raise

    async def _run(self, start_id: int | None, end_id: int | None, resume: Path | None) -> EditResult:
        history = load_history(self._history_file)
        first_new = next_start_id(history, zero_based=self._config.zero_based_ids)
        fetched = await self._device.fetch_since(first_new)
        incoming = [EntryEdit.from_entry(entry, self._config) for entry in fetched]
        view, _ = merge(history, incoming, zero_based=self._config.zero_based_ids)

        start = first_new if start_id is None else start_id
        selection = select_range(view, start, end_id)
        allowed_ids = {entry.id for entry in selection}

        if resume is None:
            self._transition(EditState.EXPORTING)
            if not selection:
                _logger.info("Nothing to edit from id %d", start)
                self._transition(EditState.COMMITTED)
                return EditResult(state=self._state, committed=(), added=0, replaced=0, scratch_path=None)
            self._scratch_path = self._write_scratch(export_text(selection, self._tz))
        else:
            resume = Path(resume)
            if not resume.is_file():
                raise TimeflipIOError(f"Scratch file {resume} does not exist", path=resume)
            self._scratch_path = resume

        self._transition(EditState.AWAITING_EDITOR)
        await self._launch_editor(self._scratch_path)

        self._transition(EditState.RELOADING)
        text = self._read_scratch(self._scratch_path)

        self._transition(EditState.VALIDATING)
        edited = validate_edits(parse_text(text, path=self._scratch_path), allowed_ids, path=self._scratch_path)
        updated, added, replaced = apply_edits(history, edited)
        persist_history(self._history_file, updated)

        self._transition(EditState.COMMITTED)
        _logger.info("Committed %d new and %d changed entries to %s", added, replaced, self._history_file)
        scratch = self._scratch_path
        try:
            scratch.unlink()
        except OSError as exc:
            _logger.warning("Cannot remove scratch file %s: %s", scratch, exc)
        return EditResult(
            state=self._state,
            committed=tuple(edited),
            added=added,
            replaced=replaced,
            scratch_path=scratch,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _write_scratch(self, text: str) -> Path:
        try:
            if self._scratch_dir is not None:
                Path(self._scratch_dir).mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix=SCRATCH_PREFIX, suffix=SCRATCH_SUFFIX, dir=self._scratch_dir)
        except OSError as exc:
            raise TimeflipIOError(f"Cannot create scratch file: {exc}", path=self._scratch_dir) from exc

        path = Path(name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            with contextlib.suppress(OSError):
                path.unlink()
            raise TimeflipIOError(f"Cannot write scratch file {path}: {exc}", path=path) from exc
        _logger.debug("Exported entries to %s", path)
        return path

    async def _launch_editor(self, path: Path) -> None:
        try:
            argv = [*shlex.split(self._editor), str(path)]
        except ValueError as exc:
            raise TimeflipConfigError(f"Cannot parse editor command {self._editor!r}: {exc}") from exc

        _logger.debug("Launching %s", argv)
        try:
            process = await asyncio.create_subprocess_exec(*argv)
        except OSError as exc:
            raise TimeflipEditorError(f"Cannot launch editor {self._editor!r}: {exc}", command=self._editor) from exc

        try:
            returncode = await asyncio.wait_for(process.wait(), timeout=self._config.editor_timeout)
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise TimeflipEditorError(
                f"Editor {self._editor!r} did not exit within {self._config.editor_timeout} seconds",
                command=self._editor,
            ) from exc
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            await asyncio.shield(process.wait())
            raise

        if returncode != 0:
            _logger.warning("Editor %r exited with status %d; reading the file anyway", self._editor, returncode)

    def _read_scratch(self, path: Path) -> str:
        try:
            with open(path, encoding="utf-8") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise TimeflipIOError(f"Cannot read scratch file {path}: {exc}", path=path) from exc
