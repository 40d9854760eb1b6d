"""Materialize a station's playlist into a loop-expanded concat manifest."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .models import PlaylistItem, StationConfig
from .storage import StationPaths, write_text_atomic

logger = logging.getLogger(__name__)

# Assumed length of an item whose duration was never probed.
FALLBACK_ITEM_DURATION = 300.0


@dataclass
class MaterializedPlaylist:
    """Result of writing a manifest."""

    path: Path
    entries: List[Path]
    repeats: int
    cycle_seconds: float

    @property
    def item_count(self) -> int:
        return len(self.entries)

    @property
    def total_seconds(self) -> float:
        return self.cycle_seconds * self.repeats

    @property
    def summary(self) -> str:
        distinct = self.item_count // self.repeats if self.repeats else 0
        hours = round(self.total_seconds / 3600)
        return f"{distinct} items × {self.repeats} repeats ({hours}h)"


def enabled_items(items: Iterable[PlaylistItem]) -> List[PlaylistItem]:
    """Enabled items in playback order."""
    return sorted((item for item in items if item.enabled), key=lambda item: item.sort_order)


def cycle_duration(items: Sequence[PlaylistItem]) -> float:
    total = 0.0
    for item in items:
        if item.duration is None or item.duration <= 0:
            total += FALLBACK_ITEM_DURATION
        else:
            total += item.duration
    return total


def repeat_count(cycle_seconds: float, target_seconds: float, min_repeats: int = 2) -> int:
    """How many times a cycle must repeat to cover ``target_seconds``."""
    if cycle_seconds <= 0:
        return 0
    return max(min_repeats, math.ceil(target_seconds / cycle_seconds))


def quote_entry(path: Path) -> str:
    return "file '" + str(path).replace("'", "'\\''") + "'"


def unquote_entry(line: str) -> Optional[Path]:
    line = line.strip()
    if not line.startswith("file "):
        return None
    value = line[len("file "):].strip()
    if len(value) >= 2 and value[0] == "'" and value[-1] == "'":
        value = value[1:-1]
    return Path(value.replace("'\\''", "'"))


def read_manifest(path: Path) -> List[Path]:
    """Return the media paths listed in a manifest, in playback order."""
    entries = []
    for line in path.read_text(encoding="utf-8").splitlines():
        entry = unquote_entry(line)
        if entry is not None:
            entries.append(entry)
    return entries


class PlaylistMaterializer:
    """Writes ``playlist.txt`` and ``playlist.repeats`` for a station."""

    def __init__(
        self,
        data_dir: Path,
        uploads_dir: Path,
        *,
        coverage_hours: float = 24.0,
        min_repeats: int = 2,
    ) -> None:
        self.data_dir = data_dir
        self.uploads_dir = uploads_dir
        self.coverage_hours = coverage_hours
        self.min_repeats = min_repeats

    @property
    def target_seconds(self) -> float:
        return self.coverage_hours * 3600

    def media_path(self, station_id: str, item: PlaylistItem) -> Path:
        return (self.uploads_dir / station_id / item.filename).resolve()

    def materialize(self, config: StationConfig) -> MaterializedPlaylist:
        """
        Expand the enabled items and atomically replace the manifest.

        Args:
            config: Station configuration snapshot

        Returns:
            Description of what was written
        """
        paths = StationPaths.for_slug(self.data_dir, config.slug).ensure()
        items = enabled_items(config.playlist)
        cycle = cycle_duration(items)
        repeats = repeat_count(cycle, self.target_seconds, self.min_repeats)

        lines = [quote_entry(self.media_path(config.station_id, item)) for item in items]
        expanded = lines * repeats

        write_text_atomic(paths.playlist, "".join(line + "\n" for line in expanded))
        write_text_atomic(paths.repeats, f"{repeats}\n")

        if not items:
            logger.warning("Station %s has no enabled playlist items", config.station_id)
        else:
            logger.info(
                "Wrote playlist for %s: %d items x %d repeats",
                config.station_id,
                len(items),
                repeats,
            )

        return MaterializedPlaylist(
            path=paths.playlist,
            entries=[self.media_path(config.station_id, item) for item in items] * repeats,
            repeats=repeats,
            cycle_seconds=cycle,
        )
