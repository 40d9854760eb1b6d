"""Read accessors for station configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional, Protocol

from .models import StationConfig

logger = logging.getLogger(__name__)


class StationStore(Protocol):
    """What the supervisor needs from the configuration store."""

    def get(self, station_id: str) -> Optional[StationConfig]:
        """Return the full configuration snapshot, or None if unknown."""

    def get_slug(self, station_id: str) -> Optional[str]:
        """Return only the station slug, or None if unknown."""


class MemoryStationStore:
    """Dictionary-backed store, used for embedding and tests."""

    def __init__(self) -> None:
        self._stations: Dict[str, StationConfig] = {}

    def put(self, config: StationConfig) -> None:
        self._stations[config.station_id] = config

    def remove(self, station_id: str) -> None:
        self._stations.pop(station_id, None)

    def get(self, station_id: str) -> Optional[StationConfig]:
        return self._stations.get(station_id)

    def get_slug(self, station_id: str) -> Optional[str]:
        config = self._stations.get(station_id)
        return config.slug if config else None

    def ids(self) -> list[str]:
        return sorted(self._stations)


class JsonStationStore:
    """Reads ``<station_id>.json`` documents from a directory on every call."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, station_id: str) -> Path:
        # station ids come from URLs; never let them escape the directory
        name = Path(station_id).name
        return self.directory / f"{name}.json"

    def get(self, station_id: str) -> Optional[StationConfig]:
        path = self._path(station_id)
        if not path.is_file():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        data.setdefault("id", station_id)
        return StationConfig.from_dict(data)

    def get_slug(self, station_id: str) -> Optional[str]:
        config = self.get(station_id)
        return config.slug if config else None

    def ids(self) -> list[str]:
        return sorted(path.stem for path in self.directory.glob("*.json"))
