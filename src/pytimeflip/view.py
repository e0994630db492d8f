"""Filtering and rendering of history snapshots.

:class:`HistoryView` never mutates anything: every filter returns a new view
and every renderer returns a string.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from enum import StrEnum
from typing import assert_never

from pytimeflip.models.entry import EntryEdit

EMPTY_TEXT = "no entries"


class HistoryStyle(StrEnum):
    LINES = "lines"
    TABULAR = "tabular"
    SUMMARIZED = "summarized"


def format_duration(value: timedelta) -> str:
    """Render as ``H:MM:SS``; hours are not wrapped at 24."""
    total = int(value.total_seconds())
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


def local_midnight(day: date, tz: tzinfo | None = None) -> datetime:
    """Start of *day* in *tz* (``None`` is the system local zone)."""
    naive = datetime.combine(day, time.min)
    if tz is None:
        return naive.astimezone()
    return naive.replace(tzinfo=tz)


@dataclass(frozen=True)
class DayGroup:
    day: date
    entries: tuple[EntryEdit, ...]

    @property
    def total(self) -> timedelta:
        return sum((entry.duration for entry in self.entries), timedelta())


@dataclass(frozen=True)
class FacetSummary:
    facet: str
    count: int
    total: timedelta


class HistoryView:
    """Immutable snapshot of entries, ascending by id.

    Parameters
    ----------
    entries
        Entries to show; sorted by id on construction.
    tz
        Zone used for calendar days and displayed clock times. ``None`` uses
        the system local zone.
    """

    def __init__(self, entries: Iterable[EntryEdit], *, tz: tzinfo | None = None) -> None:
        self._entries: tuple[EntryEdit, ...] = tuple(sorted(entries, key=lambda e: e.id))
        self._tz = tz

    @property
    def entries(self) -> tuple[EntryEdit, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EntryEdit]:
        return iter(self._entries)

    def _local(self, value: datetime) -> datetime:
        return value.astimezone(self._tz)

    def _aware(self, value: datetime) -> datetime:
        if value.tzinfo is not None:
            return value
        if self._tz is None:
            return value.astimezone()
        return value.replace(tzinfo=self._tz)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def all(self) -> HistoryView:
        return self

    def since(self, threshold: datetime) -> HistoryView:
        """Entries starting at or after *threshold* (naive means local)."""
        threshold = self._aware(threshold)
        return HistoryView((e for e in self._entries if e.start_time >= threshold), tz=self._tz)

    def since_date(self, day: date) -> HistoryView:
        """Entries starting on or after local midnight of *day*."""
        return self.since(local_midnight(day, self._tz))

    # ------------------------------------------------------------------
    # Grouping
    # ------------------------------------------------------------------

    def days(self) -> list[DayGroup]:
        """Entries grouped by the local calendar day they start on."""
        groups: dict[date, list[EntryEdit]] = {}
        for entry in self._entries:
            groups.setdefault(self._local(entry.start_time).date(), []).append(entry)
        return [DayGroup(day=day, entries=tuple(groups[day])) for day in sorted(groups)]

    def facet_totals(self) -> list[FacetSummary]:
        """Accumulated duration per facet label, in order of first appearance."""
        totals: dict[str, timedelta] = {}
        counts: dict[str, int] = {}
        for entry in self._entries:
            totals[entry.facet] = totals.get(entry.facet, timedelta()) + entry.duration
            counts[entry.facet] = counts.get(entry.facet, 0) + 1
        return [FacetSummary(facet=facet, count=counts[facet], total=total) for facet, total in totals.items()]

    @property
    def total(self) -> timedelta:
        return sum((entry.duration for entry in self._entries), timedelta())

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _facet_width(self) -> int:
        return max((len(entry.facet) for entry in self._entries), default=0)

    def lines(self) -> str:
        """One line per entry: id, local start, duration, facet, description."""
        if not self._entries:
            return EMPTY_TEXT
        width = self._facet_width()
        rendered = []
        for entry in self._entries:
            line = (
                f"{entry.id:>6}  {self._local(entry.start_time):%Y-%m-%d %H:%M}  "
                f"{format_duration(entry.duration):>8}  {entry.facet:<{width}}"
            )
            if entry.description:
                line = f"{line}  {entry.description}"
            rendered.append(line.rstrip())
        return "\n".join(rendered)

    def table_by_day(self) -> str:
        """Day blocks with one row per entry and a subtotal row."""
        if not self._entries:
            return EMPTY_TEXT
        width = self._facet_width()
        blocks = []
        for group in self.days():
            rows = [f"{group.day.isoformat()} ({group.day:%A})"]
            for entry in group.entries:
                span = f"{self._local(entry.start_time):%H:%M}-{self._local(entry.end_time):%H:%M}"
                row = f"  {span}  {entry.facet:<{width}}  {format_duration(entry.duration):>8}"
                if entry.description:
                    row = f"{row}  {entry.description}"
                rows.append(row)
            rows.append(f"  {'total':<11}  {'':<{width}}  {format_duration(group.total):>8}")
            blocks.append("\n".join(rows))
        return "\n\n".join(blocks)

    def summarized(self) -> str:
        """Total duration per facet over the whole view."""
        if not self._entries:
            return EMPTY_TEXT
        summaries = self.facet_totals()
        width = max(len("total"), *(len(summary.facet) for summary in summaries))
        rows = [
            f"{summary.facet:<{width}}  {format_duration(summary.total):>8}  ({_plural(summary.count)})"
            for summary in summaries
        ]
        rows.append(f"{'total':<{width}}  {format_duration(self.total):>8}  ({_plural(len(self._entries))})")
        return "\n".join(rows)

    def render(self, style: HistoryStyle) -> str:
        match style:
            case HistoryStyle.LINES:
                return self.lines()
            case HistoryStyle.TABULAR:
                return self.table_by_day()
            case HistoryStyle.SUMMARIZED:
                return self.summarized()
            case _:
                assert_never(style)


def _plural(count: int) -> str:
    return f"{count} entry" if count == 1 else f"{count} entries"
