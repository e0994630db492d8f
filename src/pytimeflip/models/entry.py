"""Device entries and their editable projection."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from pydantic import ConfigDict, Field, field_serializer, field_validator, model_validator

from pytimeflip.models._base import TimeflipBaseModel, UtcDatetime, seconds_or_float

if TYPE_CHECKING:
    from pytimeflip.config import TimeflipConfig


class Entry(TimeflipBaseModel):
    """One interval recorded by the cube.

    Parameters
    ----------
    id : int
        Device-assigned, unique and increasing.
    facet : int
        1-based face number the cube was resting on.
    time : datetime
        Start of the interval, UTC.
    duration : timedelta
        Time spent on the face. Serialized as seconds.
    """

    id: int = Field(ge=0)
    facet: int = Field(ge=1)
    time: UtcDatetime
    duration: timedelta

    @field_validator("duration")
    @classmethod
    def _non_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("duration must not be negative")
        return value

    @field_serializer("duration")
    def _serialize_duration(self, value: timedelta) -> int | float:
        return seconds_or_float(value)

    @property
    def facet_index(self) -> int:
        """0-based index into the facet configuration."""
        return self.facet - 1


class EntryEdit(TimeflipBaseModel):
    """Editable/display projection of an :class:`Entry`.

    This is what the history file holds and what the user edits. The facet is
    stored as its display label.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    id: int = Field(ge=0)
    facet: str = Field(min_length=1)
    start_time: UtcDatetime
    end_time: UtcDatetime
    description: str = ""

    @model_validator(mode="after")
    def _check_interval(self) -> EntryEdit:
        if self.end_time < self.start_time:
            raise ValueError(f"entry {self.id}: end_time {self.end_time.isoformat()} is before start_time")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @classmethod
    def from_entry(cls, entry: Entry, config: TimeflipConfig) -> EntryEdit:
        """Mechanical conversion; the facet label comes from *config*."""
        return cls(
            id=entry.id,
            facet=config.facet_name(entry.facet),
            start_time=entry.time,
            end_time=entry.time + entry.duration,
        )
