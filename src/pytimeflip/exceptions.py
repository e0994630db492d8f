"""Custom exception hierarchy for pytimeflip."""

from __future__ import annotations

from pathlib import Path


class TimeflipError(Exception):
    """Base exception for all pytimeflip errors."""


class TimeflipConfigError(TimeflipError):
    """Invalid or missing configuration."""


class TimeflipDeviceError(TimeflipError):
    """Communication with the cube failed.

    Fatal for the current invocation; device reads are never retried.
    """

    def __init__(self, message: str, *, start_id: int | None = None) -> None:
        self.start_id = start_id
        super().__init__(message)


class TimeflipIOError(TimeflipError):
    """A history, cache or scratch file could not be read or written."""

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class TimeflipParseError(TimeflipError):
    """A structured file exists but its content is not valid.

    Never treated as "no prior state": a corrupt history must not be
    silently replaced by an empty one.
    """

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class TimeflipValidationError(TimeflipParseError):
    """Edited entries parsed fine but are not acceptable for commit.

    Raised for duplicate ids and for ids outside the exported selection.
    Intervals that end before they start already fail to parse and raise a
    plain :class:`TimeflipParseError`.
    """


class TimeflipEditorError(TimeflipError):
    """The external editor could not be launched or did not finish in time.

    A non-zero exit status of the editor is *not* an error.
    """

    def __init__(self, message: str, *, command: str = "") -> None:
        self.command = command
        super().__init__(message)
