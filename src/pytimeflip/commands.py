"""History commands.

Commands are plain models tagged by ``kind``; :func:`run_command` matches on
them exhaustively. A command runs as a single task that may race against a
background device-connection task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from datetime import date, tzinfo
from pathlib import Path
from typing import Annotated, Any, Literal, TextIO, TypeVar, assert_never

from pydantic import Field, model_validator

from pytimeflip.config import TimeflipConfig
from pytimeflip.device import DeviceReader, DeviceSession
from pytimeflip.edit import EditResult, EditSession
from pytimeflip.exceptions import TimeflipConfigError, TimeflipDeviceError, TimeflipIOError
from pytimeflip.history.merge import merge
from pytimeflip.history.store import load_entries, persist_entries
from pytimeflip.models._base import TimeflipBaseModel
from pytimeflip.models.entry import EntryEdit
from pytimeflip.view import HistoryStyle, HistoryView

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class ListCommand(TimeflipBaseModel):
    """``history list``: sync the raw cache and print it."""

    kind: Literal["list"] = "list"
    update: Path | None = None
    start_with: int | None = Field(default=None, ge=0)
    since: date | None = None
    style: HistoryStyle = HistoryStyle.TABULAR


class EditCommand(TimeflipBaseModel):
    """``history edit``: edit a range of entries and append it to the history."""

    kind: Literal["edit"] = "edit"
    editor: str | None = None
    history_file: Path | None = None
    start_id: int | None = Field(default=None, ge=0)
    end_id: int | None = Field(default=None, ge=0)
    resume: Path | None = None

    @model_validator(mode="after")
    def _check_range(self) -> EditCommand:
        if self.start_id is not None and self.end_id is not None and self.end_id < self.start_id:
            raise ValueError(f"end_id {self.end_id} is before start_id {self.start_id}")
        return self


HistoryCommand = Annotated[ListCommand | EditCommand, Field(discriminator="kind")]


async def run_list(
    command: ListCommand,
    device: DeviceSession,
    config: TimeflipConfig,
    *,
    tz: tzinfo | None = None,
) -> str:
    """Fetch new entries, update the cache file if any, and render."""
    update_file = command.update or config.cache_file
    cached = load_entries(update_file) if update_file is not None else []

    # An explicit --start-with wins over the cache; re-reading known ids is
    # harmless since stored entries win the merge.
    cached, start = merge(cached, [], start_override=command.start_with, zero_based=config.zero_based_ids)

    fetched = await device.fetch_since(start)
    merged, next_id = merge(cached, fetched, zero_based=config.zero_based_ids)
    _logger.debug("Next read starts at id %d", next_id)

    if update_file is not None:
        try:
            persist_entries(update_file, merged)
        except TimeflipIOError as exc:
            raise TimeflipIOError(
                f"{len(merged) - len(cached)} entries fetched from the device were not saved: {exc}",
                path=exc.path,
            ) from exc

    view = HistoryView((EntryEdit.from_entry(entry, config) for entry in merged), tz=tz)
    if command.since is not None:
        view = view.since_date(command.since)
    return view.render(command.style)


async def run_edit(
    command: EditCommand,
    device: DeviceSession,
    config: TimeflipConfig,
    *,
    tz: tzinfo | None = None,
) -> EditResult:
    history_file = command.history_file or config.history_file
    if history_file is None:
        raise TimeflipConfigError("No history file configured (pass --history-file or set TIMEFLIP_HISTORY_FILE)")
    session = EditSession(config, device, history_file=history_file, editor=command.editor, tz=tz)
    return await session.run(command.start_id, command.end_id, resume=command.resume)


def describe_edit(result: EditResult, history_file: Path | None) -> str:
    if result.scratch_path is None:
        return "Nothing to edit"
    return f"Committed {result.added} new and {result.replaced} changed entries to {history_file}"


async def race_background(
    main: Coroutine[Any, Any, T],
    background: asyncio.Future[Any] | None,
) -> T:
    """Await *main* unless *background* fails first.

    A background task that ends cleanly does not stop the command. One that
    fails or is cancelled cancels the command and raises
    :class:`TimeflipDeviceError`.
    """
    if background is None:
        return await main

    task = asyncio.ensure_future(main)
    try:
        done, _ = await asyncio.wait({task, background}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    error: BaseException | None
    if background.cancelled():
        error = asyncio.CancelledError()
    else:
        error = background.exception()
    if error is None:
        return await task

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    _logger.error("Device connection background task exited with error: %r", error)
    raise TimeflipDeviceError(f"Device connection failed: {error!r}") from error


async def run_command(
    command: HistoryCommand,
    reader: DeviceReader,
    config: TimeflipConfig,
    *,
    out: TextIO,
    tz: tzinfo | None = None,
    background: asyncio.Future[Any] | None = None,
) -> None:
    """Dispatch *command* and write its output to *out*."""
    device = DeviceSession(reader)
    match command:
        case ListCommand():
            text = await race_background(run_list(command, device, config, tz=tz), background)
            print(text, file=out)
        case EditCommand():
            result = await race_background(run_edit(command, device, config, tz=tz), background)
            print(describe_edit(result, command.history_file or config.history_file), file=out)
        case _:
            assert_never(command)
