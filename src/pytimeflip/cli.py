"""``timeflip`` command line.

Usage::

    export TIMEFLIP_FACETS="Work,Break,Meetings"
    timeflip --device-dump cube.json history list --update entries.json --style summarized
    timeflip --device-dump cube.json history edit --history-file history.json --editor vim

The live Bluetooth transport is not part of this package; the CLI reads the
cube's history from a JSON dump (``--device-dump`` or ``TIMEFLIP_DEVICE_DUMP``).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from pydantic import ValidationError

from pytimeflip import __version__
from pytimeflip.commands import EditCommand, HistoryCommand, ListCommand, run_command
from pytimeflip.config import TimeflipConfig
from pytimeflip.device import DeviceReader, ReplayDeviceReader
from pytimeflip.exceptions import TimeflipConfigError, TimeflipError
from pytimeflip.view import HistoryStyle

_logger = logging.getLogger(__name__)


def _date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="timeflip", description="Sync and edit TimeFlip2 history.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--device-dump", type=Path, help="read device history from a JSON dump of raw entries")
    parser.add_argument("--verbose", "-v", action="store_true", help="enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    history = commands.add_parser("history", help="print or edit logged TimeFlip events")
    history_commands = history.add_subparsers(dest="history_command", required=True)

    list_parser = history_commands.add_parser("list", help="print logged events")
    list_parser.add_argument("--update", type=Path, help="read events from and write new events to FILE")
    list_parser.add_argument(
        "--start-with",
        type=int,
        help="start reading with entry ID instead of after the latest event in --update",
    )
    list_parser.add_argument("--since", type=_date, help="only show entries starting on or after DATE (YYYY-MM-DD)")
    list_parser.add_argument(
        "--style",
        choices=[style.value for style in HistoryStyle],
        default=HistoryStyle.TABULAR.value,
        help="output style (default: %(default)s)",
    )

    edit_parser = history_commands.add_parser("edit", help="edit events in an external editor")
    edit_parser.add_argument("--editor", help="editor command (default: TIMEFLIP_EDITOR, VISUAL or EDITOR)")
    edit_parser.add_argument("--history-file", type=Path, help="edited history to extend")
    edit_parser.add_argument("--start-id", type=int, help="first entry ID to edit (default: first new entry)")
    edit_parser.add_argument("--end-id", type=int, help="last entry ID to edit (default: unbounded)")
    edit_parser.add_argument("--resume", type=Path, help="reopen a scratch file kept by a failed edit")
    return parser


def command_from_args(args: argparse.Namespace) -> HistoryCommand:
    if args.history_command == "list":
        return ListCommand(
            update=args.update,
            start_with=args.start_with,
            since=args.since,
            style=HistoryStyle(args.style),
        )
    return EditCommand(
        editor=args.editor,
        history_file=args.history_file,
        start_id=args.start_id,
        end_id=args.end_id,
        resume=args.resume,
    )


def reader_from_config(config: TimeflipConfig) -> DeviceReader:
    if config.device_dump is None:
        raise TimeflipConfigError("No device source configured (pass --device-dump or set TIMEFLIP_DEVICE_DUMP)")
    return ReplayDeviceReader(config.device_dump)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    try:
        command = command_from_args(args)
    except ValidationError as exc:
        parser.error(str(exc))

    try:
        config = TimeflipConfig.from_env(device_dump=args.device_dump)
        reader = reader_from_config(config)
        asyncio.run(run_command(command, reader, config, out=sys.stdout))
    except TimeflipError as exc:
        print(f"timeflip: error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        _logger.info("shutting down")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
