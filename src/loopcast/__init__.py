"""loopcast: supervise looping ffmpeg broadcasts, one pipeline per station."""

from .events import LogBook, LogEvent, PipelineEvents, Severity
from .launch import (
    NoAudioSourceError,
    NoDestinationError,
    PipelineError,
    PlaylistMissingError,
    PreconditionError,
    StationNotFoundError,
)
from .models import PipelineState, PipelineStatus, StationConfig
from .process import SpawnError
from .settings import Settings
from .snapshot import SnapshotError
from .store import JsonStationStore, MemoryStationStore, StationStore
from .supervisor import StationSupervisor

__all__ = [
    "JsonStationStore",
    "LogBook",
    "LogEvent",
    "MemoryStationStore",
    "NoAudioSourceError",
    "NoDestinationError",
    "PipelineError",
    "PipelineEvents",
    "PipelineState",
    "PipelineStatus",
    "PlaylistMissingError",
    "PreconditionError",
    "Settings",
    "Severity",
    "SnapshotError",
    "SpawnError",
    "StationConfig",
    "StationNotFoundError",
    "StationStore",
    "StationSupervisor",
]
