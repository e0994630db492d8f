"""Device reader boundary.

The Bluetooth transport itself lives outside this package. Anything that can
answer "give me the entries starting at id N" satisfies :class:`DeviceReader`;
:class:`DeviceSession` wraps such a reader and enforces the read contract for
the rest of the library.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from pytimeflip.exceptions import TimeflipDeviceError, TimeflipError
from pytimeflip.history.store import ENTRIES_ADAPTER
from pytimeflip.models.entry import Entry

_logger = logging.getLogger(__name__)


class DeviceReader(Protocol):
    """Structural interface of a history source.

    Implementations return entries with ``id >= start_id`` (possibly none).
    Having a protocol here makes it easy to pass test doubles while keeping
    live transports out of this package.
    """

    async def fetch_since(self, start_id: int) -> list[Entry]: ...


class ReplayDeviceReader:
    """Serve history from a JSON dump of raw entries.

    Useful when the cube was read by another tool, and in tests. The file is
    read on every call.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    async def fetch_since(self, start_id: int) -> list[Entry]:
        try:
            raw = self._path.read_bytes()
        except OSError as exc:
            raise TimeflipDeviceError(f"Cannot read device dump {self._path}: {exc}", start_id=start_id) from exc
        try:
            entries = ENTRIES_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            raise TimeflipDeviceError(f"Invalid device dump {self._path}: {exc}", start_id=start_id) from exc
        return sorted((entry for entry in entries if entry.id >= start_id), key=lambda e: e.id)


class DeviceSession:
    """Single-invocation view of a :class:`DeviceReader`.

    * failures of the reader surface as :class:`TimeflipDeviceError` (no retry)
    * ``start_id`` must not decrease between calls
    * entries below ``start_id`` are dropped, the rest sorted by id
    """

    def __init__(self, reader: DeviceReader) -> None:
        self._reader = reader
        self._last_start_id: int | None = None

    @property
    def last_start_id(self) -> int | None:
        return self._last_start_id

    async def fetch_since(self, start_id: int) -> list[Entry]:
        if start_id < 0:
            raise ValueError(f"start_id must be non-negative, got {start_id}")
        if self._last_start_id is not None and start_id < self._last_start_id:
            raise ValueError(f"start_id went backwards: {start_id} < {self._last_start_id}")
        self._last_start_id = start_id

        _logger.debug("Reading device history since id %d", start_id)
        try:
            entries = await self._reader.fetch_since(start_id)
        except TimeflipError:
            raise
        except Exception as exc:
            raise TimeflipDeviceError(f"Reading history since id {start_id} failed: {exc}", start_id=start_id) from exc

        accepted = [entry for entry in entries if entry.id >= start_id]
        if len(accepted) != len(entries):
            _logger.warning(
                "Device returned %d entries below start id %d; ignoring them",
                len(entries) - len(accepted),
                start_id,
            )
        accepted.sort(key=lambda e: e.id)
        _logger.info("Fetched %d new entries from the device", len(accepted))
        return accepted
