"""Edit session tests.

The editor is a real subprocess: small Python snippets run with the current
interpreter and receive the scratch file path as their last argument.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from pytimeflip.config import FacetSide, TimeflipConfig
from pytimeflip.device import DeviceSession
from pytimeflip.edit import (
    EditSession,
    EditState,
    apply_edits,
    export_text,
    parse_text,
    select_range,
    validate_edits,
)
from pytimeflip.exceptions import (
    TimeflipConfigError,
    TimeflipEditorError,
    TimeflipIOError,
    TimeflipParseError,
    TimeflipValidationError,
)
from pytimeflip.history.store import load_history, persist_history
from pytimeflip.models.entry import Entry, EntryEdit

_T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
_CONFIG = TimeflipConfig(sides=(FacetSide("Work"), FacetSide("Break")))


def _python_editor(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


_NOOP = _python_editor("pass")
_EXIT_3 = _python_editor("import sys; sys.exit(3)")
_CORRUPT = _python_editor("import pathlib, sys; pathlib.Path(sys.argv[1]).write_text('[{broken')")
_SLEEP = _python_editor("import time; time.sleep(30)")


def _json_editor(body: str) -> str:
    return _python_editor(
        "import json, os, pathlib, sys\n"
        "p = pathlib.Path(sys.argv[1])\n"
        "data = json.loads(p.read_text(encoding='utf-8'))\n"
        f"{body}\n"
    )


_ANNOTATE_FIRST = _json_editor("data[0]['description'] = 'standup'\np.write_text(json.dumps(data), encoding='utf-8')")
_DUPLICATE_FIRST = _json_editor("data.append(data[0])\np.write_text(json.dumps(data), encoding='utf-8')")
_ADD_FOREIGN = _json_editor(
    "extra = dict(data[0], id=99)\ndata.append(extra)\np.write_text(json.dumps(data), encoding='utf-8')"
)
# Saves through a new file and a rename, like editors with atomic saves do.
_SAVE_BY_RENAME = _json_editor(
    "data[-1]['description'] = 'renamed'\n"
    "tmp = p.with_suffix('.new')\n"
    "tmp.write_text(json.dumps(data), encoding='utf-8')\n"
    "os.replace(tmp, p)"
)


def _entry(entry_id: int, facet: int = 1) -> Entry:
    return Entry(id=entry_id, facet=facet, time=_T0 + timedelta(hours=entry_id), duration=timedelta(minutes=20))


def _stored(entry_id: int, description: str = "") -> EntryEdit:
    return EntryEdit.from_entry(_entry(entry_id), _CONFIG).model_copy(update={"description": description})


class _Reader:
    def __init__(self, entries: list[Entry]) -> None:
        self.entries = entries
        self.calls: list[int] = []

    async def fetch_since(self, start_id: int) -> list[Entry]:
        self.calls.append(start_id)
        return [entry for entry in self.entries if entry.id >= start_id]


def _session(
    tmp_path: Path,
    device_entries: list[Entry],
    editor: str,
    *,
    config: TimeflipConfig = _CONFIG,
    scratch_dir: Path | None = None,
) -> EditSession:
    return EditSession(
        config,
        DeviceSession(_Reader(device_entries)),
        history_file=tmp_path / "history.json",
        editor=editor,
        scratch_dir=scratch_dir if scratch_dir is not None else tmp_path / "scratch",
        tz=UTC,
    )


# ------------------------------------------------------------------
# Full sessions
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_noop_edit_adds_exactly_the_new_entries(tmp_path: Path) -> None:
    stored = [_stored(1), _stored(2, "kept")]
    persist_history(tmp_path / "history.json", stored)
    session = _session(tmp_path, [_entry(1), _entry(2, facet=2), _entry(3), _entry(4, facet=2)], _NOOP)

    result = await session.run()

    history = load_history(tmp_path / "history.json")
    assert [e.id for e in history] == [1, 2, 3, 4]
    assert history[:2] == stored
    assert history[3].facet == "Break"
    assert result.state == EditState.COMMITTED
    assert session.state == EditState.COMMITTED
    assert (result.added, result.replaced) == (2, 0)
    assert result.scratch_path is not None
    assert not result.scratch_path.exists()


@pytest.mark.asyncio
async def test_edit_is_committed(tmp_path: Path) -> None:
    session = _session(tmp_path, [_entry(1), _entry(2)], _ANNOTATE_FIRST)

    await session.run()

    history = load_history(tmp_path / "history.json")
    assert history[0].description == "standup"
    assert history[1].description == ""


@pytest.mark.asyncio
async def test_file_replaced_by_editor_is_read_fresh(tmp_path: Path) -> None:
    session = _session(tmp_path, [_entry(1), _entry(2)], _SAVE_BY_RENAME)

    await session.run()

    assert load_history(tmp_path / "history.json")[-1].description == "renamed"


@pytest.mark.asyncio
async def test_nonzero_editor_exit_is_not_a_failure(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    session = _session(tmp_path, [_entry(1)], _EXIT_3)

    with caplog.at_level(logging.WARNING, logger="pytimeflip.edit"):
        result = await session.run()

    assert result.state == EditState.COMMITTED
    assert [e.id for e in load_history(tmp_path / "history.json")] == [1]
    assert "exited with status 3" in caplog.text


@pytest.mark.asyncio
async def test_explicit_range_replaces_only_selected_ids(tmp_path: Path) -> None:
    stored = [_stored(1), _stored(2, "kept")]
    persist_history(tmp_path / "history.json", stored)
    session = _session(tmp_path, [], _ANNOTATE_FIRST)

    result = await session.run(start_id=1, end_id=1)

    history = load_history(tmp_path / "history.json")
    assert history[0].description == "standup"
    assert history[1] == stored[1]
    assert (result.added, result.replaced) == (0, 1)


@pytest.mark.asyncio
async def test_end_id_bounds_the_selection(tmp_path: Path) -> None:
    persist_history(tmp_path / "history.json", [_stored(1)])
    session = _session(tmp_path, [_entry(2), _entry(3), _entry(4)], _NOOP)

    result = await session.run(end_id=3)

    assert [e.id for e in result.committed] == [2, 3]
    assert [e.id for e in load_history(tmp_path / "history.json")] == [1, 2, 3]


@pytest.mark.asyncio
async def test_nothing_to_edit_skips_the_editor(tmp_path: Path) -> None:
    persist_history(tmp_path / "history.json", [_stored(1)])
    session = _session(tmp_path, [_entry(1)], str(tmp_path / "never-launched"))

    result = await session.run()

    assert result.state == EditState.COMMITTED
    assert result.committed == ()
    assert result.scratch_path is None


@pytest.mark.asyncio
async def test_default_config_edits_from_id_zero(tmp_path: Path) -> None:
    config = TimeflipConfig()
    reader = _Reader([_entry(0), _entry(1)])
    session = EditSession(
        config,
        DeviceSession(reader),
        history_file=tmp_path / "history.json",
        editor=_NOOP,
        scratch_dir=tmp_path,
        tz=UTC,
    )

    await session.run()

    assert reader.calls == [0]
    assert [e.id for e in load_history(tmp_path / "history.json")] == [0, 1]


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_parse_failure_keeps_scratch_and_history(tmp_path: Path) -> None:
    persist_history(tmp_path / "history.json", [_stored(1)])
    before = (tmp_path / "history.json").read_bytes()
    session = _session(tmp_path, [_entry(2)], _CORRUPT)

    with pytest.raises(TimeflipParseError):
        await session.run()

    assert session.state == EditState.FAILED
    assert session.scratch_path is not None
    assert session.scratch_path.read_text(encoding="utf-8") == "[{broken"
    assert (tmp_path / "history.json").read_bytes() == before


@pytest.mark.asyncio
async def test_duplicate_ids_fail_validation(tmp_path: Path) -> None:
    session = _session(tmp_path, [_entry(1), _entry(2)], _DUPLICATE_FIRST)

    with pytest.raises(TimeflipValidationError, match="Duplicate entry ids"):
        await session.run()

    assert session.state == EditState.FAILED
    assert not (tmp_path / "history.json").exists()


@pytest.mark.asyncio
async def test_foreign_ids_fail_validation(tmp_path: Path) -> None:
    session = _session(tmp_path, [_entry(1)], _ADD_FOREIGN)

    with pytest.raises(TimeflipValidationError, match=r"\[99\]"):
        await session.run()


@pytest.mark.asyncio
async def test_resume_after_failed_validation(tmp_path: Path) -> None:
    failed = _session(tmp_path, [_entry(1), _entry(2)], _DUPLICATE_FIRST)
    with pytest.raises(TimeflipValidationError):
        await failed.run()
    scratch = failed.scratch_path
    assert scratch is not None and scratch.exists()

    # The user fixes the file by hand and retries.
    data = json.loads(scratch.read_text(encoding="utf-8"))
    scratch.write_text(json.dumps(data[:-1]), encoding="utf-8")

    retry = _session(tmp_path, [_entry(1), _entry(2)], _NOOP)
    result = await retry.run(resume=scratch)

    assert result.state == EditState.COMMITTED
    assert [e.id for e in load_history(tmp_path / "history.json")] == [1, 2]
    assert not scratch.exists()


@pytest.mark.asyncio
async def test_resume_missing_scratch(tmp_path: Path) -> None:
    session = _session(tmp_path, [_entry(1)], _NOOP)

    with pytest.raises(TimeflipIOError, match="does not exist"):
        await session.run(resume=tmp_path / "gone.json")

    assert session.state == EditState.FAILED


@pytest.mark.asyncio
async def test_editor_launch_failure(tmp_path: Path) -> None:
    session = _session(tmp_path, [_entry(1)], str(tmp_path / "no-such-editor"))

    with pytest.raises(TimeflipEditorError) as excinfo:
        await session.run()

    assert excinfo.value.command == str(tmp_path / "no-such-editor")
    assert session.state == EditState.FAILED
    assert not (tmp_path / "history.json").exists()


@pytest.mark.asyncio
async def test_editor_timeout_kills_editor_and_keeps_scratch(tmp_path: Path) -> None:
    config = TimeflipConfig(sides=_CONFIG.sides, editor_timeout=0.5)
    session = _session(tmp_path, [_entry(1)], _SLEEP, config=config)

    with pytest.raises(TimeflipEditorError, match="did not exit"):
        await session.run()

    assert session.scratch_path is not None
    assert session.scratch_path.exists()


@pytest.mark.asyncio
async def test_cancelled_session_reaps_editor(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    processes: list[asyncio.subprocess.Process] = []
    spawn = asyncio.create_subprocess_exec

    async def _spawn(*args: str, **kwargs: object) -> asyncio.subprocess.Process:
        process = await spawn(*args, **kwargs)
        processes.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", _spawn)
    session = _session(tmp_path, [_entry(1)], _SLEEP)
    task = asyncio.create_task(session.run())
    for _ in range(500):
        if processes:
            break
        await asyncio.sleep(0.01)
    assert processes

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert processes[0].returncode is not None
    assert session.state == EditState.FAILED
    assert session.scratch_path is not None
    assert session.scratch_path.exists()


@pytest.mark.asyncio
async def test_scratch_creation_failure(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    persist_history(tmp_path / "history.json", [_stored(1)])
    before = (tmp_path / "history.json").read_bytes()
    session = _session(tmp_path, [_entry(2)], _NOOP, scratch_dir=blocker)

    with pytest.raises(TimeflipIOError, match="scratch file"):
        await session.run()

    assert session.state == EditState.FAILED
    assert session.scratch_path is None
    assert (tmp_path / "history.json").read_bytes() == before


@pytest.mark.asyncio
async def test_session_runs_once(tmp_path: Path) -> None:
    session = _session(tmp_path, [], _NOOP)
    await session.run()

    with pytest.raises(RuntimeError):
        await session.run()


def test_editor_is_required(tmp_path: Path) -> None:
    with pytest.raises(TimeflipConfigError):
        EditSession(TimeflipConfig(), DeviceSession(_Reader([])), history_file=tmp_path / "history.json")


@pytest.mark.asyncio
async def test_export_is_byte_identical_across_runs(tmp_path: Path) -> None:
    persist_history(tmp_path / "history.json", [_stored(1)])
    captures = [tmp_path / "first.json", tmp_path / "second.json"]

    for capture in captures:
        editor = _python_editor(
            f"import shutil, sys; shutil.copy(sys.argv[1], {str(capture)!r}); open(sys.argv[1], 'w').write('x')"
        )
        with pytest.raises(TimeflipParseError):
            await _session(tmp_path, [_entry(2), _entry(3)], editor).run()

    assert captures[0].read_bytes() == captures[1].read_bytes()
    assert [e["id"] for e in json.loads(captures[0].read_text(encoding="utf-8"))] == [2, 3]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def test_select_range() -> None:
    entries = [_stored(i) for i in range(1, 6)]
    assert [e.id for e in select_range(entries, 2, 4)] == [2, 3, 4]
    assert [e.id for e in select_range(entries, 4)] == [4, 5]
    assert select_range(entries, 9) == []


def test_export_then_parse_preserves_values() -> None:
    entries = [_stored(1, "a"), _stored(2, "b \"quoted\"")]
    text = export_text(entries, UTC)

    assert text.endswith("\n")
    assert parse_text(text) == entries


def test_parse_text_rejects_inverted_interval() -> None:
    text = json.dumps(
        [{"id": 1, "facet": "Work", "start_time": "2026-01-05T10:00:00Z", "end_time": "2026-01-05T09:00:00Z"}]
    )
    with pytest.raises(TimeflipParseError, match="before start_time") as excinfo:
        parse_text(text)
    assert not isinstance(excinfo.value, TimeflipValidationError)


def test_validate_edits_sorts() -> None:
    edited = validate_edits([_stored(3), _stored(1)], {1, 2, 3})
    assert [e.id for e in edited] == [1, 3]


def test_apply_edits_only_touches_edited_ids() -> None:
    history = [_stored(1), _stored(2)]
    updated, added, replaced = apply_edits(history, [_stored(2, "changed"), _stored(3)])

    assert [e.id for e in updated] == [1, 2, 3]
    assert updated[0] is history[0]
    assert updated[1].description == "changed"
    assert (added, replaced) == (1, 1)
