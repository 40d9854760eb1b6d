"""Service-wide settings loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


PIPELINE_MODES = ("single", "split")


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path("data")
    uploads_dir: Path = Path("uploads")
    stations_dir: Optional[Path] = None
    ffmpeg_path: str = "ffmpeg"
    pipeline_mode: str = "single"

    # playlist sizing
    coverage_hours: float = 24.0
    min_repeats: int = 2

    # restart / teardown policy
    backoff_factor: float = 1.5
    backoff_cap: float = 60.0
    stop_grace: float = 5.0
    settle_delay: float = 1.5

    fetch_timeout: float = 5.0
    snapshot_timeout: float = 30.0
    destination_test_timeout: float = 15.0
    log_history: int = 1000

    host: str = "0.0.0.0"
    port: int = 8000

    def __post_init__(self) -> None:
        if self.pipeline_mode not in PIPELINE_MODES:
            raise ValueError(f"pipeline_mode must be one of {PIPELINE_MODES}, got {self.pipeline_mode!r}")

    @property
    def config_dir(self) -> Path:
        return self.stations_dir or (self.data_dir / "config")

    @staticmethod
    def load() -> "Settings":
        data_dir = Path(os.environ.get("LOOPCAST_DATA_DIR", "data"))
        stations_dir = os.environ.get("LOOPCAST_STATIONS_DIR")
        return Settings(
            data_dir=data_dir,
            uploads_dir=Path(os.environ.get("LOOPCAST_UPLOADS_DIR", "uploads")),
            stations_dir=Path(stations_dir) if stations_dir else None,
            ffmpeg_path=os.environ.get("LOOPCAST_FFMPEG", "ffmpeg"),
            pipeline_mode=os.environ.get("LOOPCAST_PIPELINE_MODE", "single"),
            coverage_hours=float(os.environ.get("LOOPCAST_COVERAGE_HOURS", "24")),
            min_repeats=int(os.environ.get("LOOPCAST_MIN_REPEATS", "2")),
            backoff_factor=float(os.environ.get("LOOPCAST_BACKOFF_FACTOR", "1.5")),
            backoff_cap=float(os.environ.get("LOOPCAST_BACKOFF_CAP", "60")),
            stop_grace=float(os.environ.get("LOOPCAST_STOP_GRACE", "5")),
            settle_delay=float(os.environ.get("LOOPCAST_SETTLE_DELAY", "1.5")),
            fetch_timeout=float(os.environ.get("LOOPCAST_FETCH_TIMEOUT", "5")),
            snapshot_timeout=float(os.environ.get("LOOPCAST_SNAPSHOT_TIMEOUT", "30")),
            destination_test_timeout=float(os.environ.get("LOOPCAST_DESTINATION_TEST_TIMEOUT", "15")),
            log_history=int(os.environ.get("LOOPCAST_LOG_HISTORY", "1000")),
            host=os.environ.get("LOOPCAST_HOST", "0.0.0.0"),
            port=int(os.environ.get("LOOPCAST_PORT", "8000")),
        )
