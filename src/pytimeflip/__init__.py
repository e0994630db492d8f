"""pytimeflip - sync and edit the interval history of a TimeFlip2 cube."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pytimeflip")
except PackageNotFoundError:
    __version__ = "0+local"
from pytimeflip.config import FacetSide, TimeflipConfig
from pytimeflip.device import DeviceReader, DeviceSession, ReplayDeviceReader
from pytimeflip.edit import EditResult, EditSession, EditState
from pytimeflip.exceptions import (
    TimeflipConfigError,
    TimeflipDeviceError,
    TimeflipEditorError,
    TimeflipError,
    TimeflipIOError,
    TimeflipParseError,
    TimeflipValidationError,
)
from pytimeflip.history import load_entries, load_history, merge, next_start_id, persist_entries, persist_history
from pytimeflip.models import Entry, EntryEdit
from pytimeflip.view import HistoryStyle, HistoryView

__all__ = [
    "__version__",
    "DeviceReader",
    "DeviceSession",
    "EditResult",
    "EditSession",
    "EditState",
    "Entry",
    "EntryEdit",
    "FacetSide",
    "HistoryStyle",
    "HistoryView",
    "ReplayDeviceReader",
    "TimeflipConfig",
    "TimeflipConfigError",
    "TimeflipDeviceError",
    "TimeflipEditorError",
    "TimeflipError",
    "TimeflipIOError",
    "TimeflipParseError",
    "TimeflipValidationError",
    "load_entries",
    "load_history",
    "merge",
    "next_start_id",
    "persist_entries",
    "persist_history",
]
