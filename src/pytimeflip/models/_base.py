"""Base model and shared field types.

Every pytimeflip model inherits from :class:`TimeflipBaseModel`, which makes
instances immutable. Timestamps go through :data:`UtcDatetime` so that
everything stored or compared is an aware UTC datetime.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
"""Annotated type that normalizes any accepted datetime input to UTC."""


def seconds_or_float(value: timedelta) -> int | float:
    """Serialize a duration as whole seconds where possible."""
    seconds = value.total_seconds()
    if seconds.is_integer():
        return int(seconds)
    return seconds


class TimeflipBaseModel(BaseModel):
    """Base for pytimeflip models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )
