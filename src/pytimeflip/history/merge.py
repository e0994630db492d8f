"""Reconcile persisted entries with freshly fetched ones.

Policy for resent ids: the first-seen (persisted) value always wins. A resent
entry with different content is dropped and reported at WARNING level, so
corrected timestamps on the device side are visible in the logs instead of
vanishing silently.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol, TypeVar

_logger = logging.getLogger(__name__)


class HasId(Protocol):
    @property
    def id(self) -> int: ...


T = TypeVar("T", bound=HasId)


def next_start_id(entries: Iterable[HasId], *, zero_based: bool = True) -> int:
    """First id not covered by *entries*.

    With no entries this is the device's first id: ``0`` for devices that
    count from zero, ``1`` otherwise.
    """
    highest = max((entry.id for entry in entries), default=None)
    if highest is None:
        return 0 if zero_based else 1
    return highest + 1


def merge(
    existing: Sequence[T],
    incoming: Iterable[T],
    *,
    start_override: int | None = None,
    zero_based: bool = True,
) -> tuple[list[T], int]:
    """Merge *incoming* into *existing*.

    Returns the merged list in ascending id order and the id to start the next
    device read with (*start_override* when given). Existing values win every
    id collision, which makes the operation idempotent.
    """
    by_id: dict[int, T] = {}
    for entry in existing:
        by_id.setdefault(entry.id, entry)

    discarded = 0
    for entry in sorted(incoming, key=lambda e: e.id):
        current = by_id.get(entry.id)
        if current is None:
            by_id[entry.id] = entry
            continue
        discarded += 1
        if current != entry:
            _logger.warning("Entry %d was resent with different content; keeping the stored version", entry.id)

    if discarded:
        _logger.debug("Discarded %d already known incoming entries", discarded)

    merged = [by_id[key] for key in sorted(by_id)]
    start = start_override if start_override is not None else next_start_id(merged, zero_based=zero_based)
    return merged, start
