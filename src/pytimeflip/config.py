"""Configuration for pytimeflip."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pytimeflip.exceptions import TimeflipConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_path(value: str | None) -> Path | None:
    if value is None or not value.strip():
        return None
    return Path(value).expanduser()


def _parse_sides(value: Iterable[Any]) -> tuple[FacetSide, ...]:
    sides: list[FacetSide] = []
    for item in value:
        if isinstance(item, FacetSide):
            sides.append(item)
        elif item is None:
            sides.append(FacetSide())
        else:
            name = str(item).strip()
            sides.append(FacetSide(name=name or None))
    return tuple(sides)


@dataclasses.dataclass(frozen=True)
class FacetSide:
    """Display settings for one face of the cube."""

    name: str | None = None


@dataclasses.dataclass(frozen=True)
class TimeflipConfig:
    """Runtime configuration.

    File locations are plain fields so that every component receives them
    explicitly; nothing below the CLI looks up default directories on its own.

    Parameters
    ----------
    sides : tuple of FacetSide
        Per-face display names, indexed by the 0-based facet index. Faces
        without an entry (or without a name) render as ``"Facet <n>"``.
    zero_based_ids : bool
        Whether the device may number its history from ``0``. Only matters
        when no entry has been seen yet. The default reads from ``0``, which
        also covers devices counting from ``1``; set it to ``False`` only for
        devices known to reject a read from ``0``.
    editor : str or None
        Editor command line for ``history edit``. May contain arguments
        (``"code --wait"``).
    editor_timeout : float or None
        Seconds to wait for the editor before killing it. ``None`` waits
        forever.
    history_file : Path or None
        Default edited history file for ``history edit``.
    cache_file : Path or None
        Default raw entry cache for ``history list``.
    scratch_dir : Path or None
        Directory for edit scratch files. ``None`` uses the system temp dir.
    device_dump : Path or None
        JSON dump of raw entries served by :class:`~pytimeflip.device.ReplayDeviceReader`.
    """

    sides: tuple[FacetSide, ...] = ()
    zero_based_ids: bool = True
    editor: str | None = None
    editor_timeout: float | None = None
    history_file: Path | None = None
    cache_file: Path | None = None
    scratch_dir: Path | None = None
    device_dump: Path | None = None

    def __post_init__(self) -> None:
        if self.editor_timeout is not None and self.editor_timeout <= 0:
            raise TimeflipConfigError(f"editor_timeout must be positive, got {self.editor_timeout}")

    def facet_name(self, facet: int) -> str:
        """Display label for the 1-based *facet* number."""
        index = facet - 1
        if 0 <= index < len(self.sides):
            name = self.sides[index].name
            if name:
                return name
        return f"Facet {facet}"

    def resolve_editor(self, override: str | None = None) -> str:
        """Return the editor command line, preferring *override*."""
        editor = (override or self.editor or "").strip()
        if not editor:
            raise TimeflipConfigError("No editor configured (pass --editor or set TIMEFLIP_EDITOR, VISUAL or EDITOR)")
        return editor

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> TimeflipConfig:
        """Create configuration from environment variables.

        Reads ``TIMEFLIP_FACETS`` (comma separated names, empty slots allowed),
        ``TIMEFLIP_ZERO_BASED_IDS``, ``TIMEFLIP_EDITOR``
        (falling back to ``VISUAL`` then ``EDITOR``), ``TIMEFLIP_EDITOR_TIMEOUT``,
        ``TIMEFLIP_HISTORY_FILE``, ``TIMEFLIP_CACHE_FILE``,
        ``TIMEFLIP_SCRATCH_DIR`` and ``TIMEFLIP_DEVICE_DUMP``. Explicit
        keyword arguments override environment values.

        Parameters
        ----------
        env
            Mapping to read instead of :data:`os.environ`.
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TimeflipConfig
            Populated configuration.
        """
        if env is None:
            env = os.environ

        config_kwargs: dict[str, Any] = {}

        facets = env.get("TIMEFLIP_FACETS")
        if facets is not None:
            config_kwargs["sides"] = _parse_sides(facets.split(","))

        config_kwargs["zero_based_ids"] = _env_bool(env.get("TIMEFLIP_ZERO_BASED_IDS"), True)

        editor = env.get("TIMEFLIP_EDITOR") or env.get("VISUAL") or env.get("EDITOR")
        if editor:
            config_kwargs["editor"] = editor

        timeout_env = env.get("TIMEFLIP_EDITOR_TIMEOUT")
        if timeout_env is not None and timeout_env.strip():
            try:
                config_kwargs["editor_timeout"] = float(timeout_env)
            except ValueError as exc:
                raise TimeflipConfigError(f"TIMEFLIP_EDITOR_TIMEOUT is not a number: {timeout_env!r}") from exc

        _ENV_PATH_MAP = {
            "TIMEFLIP_HISTORY_FILE": "history_file",
            "TIMEFLIP_CACHE_FILE": "cache_file",
            "TIMEFLIP_SCRATCH_DIR": "scratch_dir",
            "TIMEFLIP_DEVICE_DUMP": "device_dump",
        }
        for env_key, field_name in _ENV_PATH_MAP.items():
            path = _env_path(env.get(env_key))
            if path is not None:
                config_kwargs[field_name] = path

        sides_override = overrides.pop("sides", None)
        if sides_override is not None:
            config_kwargs["sides"] = _parse_sides(sides_override)

        config_kwargs.update({key: value for key, value in overrides.items() if value is not None})

        return cls(**config_kwargs)
