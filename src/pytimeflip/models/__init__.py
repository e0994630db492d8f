"""Data models for pytimeflip."""

from pytimeflip.models._base import TimeflipBaseModel, UtcDatetime, ensure_utc
from pytimeflip.models.entry import Entry, EntryEdit

__all__ = [
    "Entry",
    "EntryEdit",
    "TimeflipBaseModel",
    "UtcDatetime",
    "ensure_utc",
]
