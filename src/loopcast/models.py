"""Dataclasses and enums for the loopcast runtime."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class PipelineState(str, Enum):
    """Lifecycle state of a station pipeline."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    RESTARTING = "restarting"
    ERROR = "error"


class OverlayPosition(str, Enum):
    """Anchor of the now-playing text group."""

    BOTTOM_LEFT = "bottom-left"
    BOTTOM_CENTER = "bottom-center"
    BOTTOM_RIGHT = "bottom-right"
    TOP_LEFT = "top-left"
    TOP_CENTER = "top-center"
    TOP_RIGHT = "top-right"

    @property
    def is_top(self) -> bool:
        return self.value.startswith("top")

    @property
    def horizontal(self) -> str:
        return self.value.split("-", 1)[1]


class NowPlayingMode(str, Enum):
    """Upstream the now-playing poller reads from."""

    AZURACAST = "azuracast"
    ICECAST = "icecast"


@dataclass(frozen=True)
class VideoSettings:
    width: int = 1920
    height: int = 1080
    fps: int = 30
    bitrate: str = "4000k"


@dataclass(frozen=True)
class AudioSettings:
    bitrate: str = "192k"
    sample_rate: int = 44100


@dataclass(frozen=True)
class OverlayStyle:
    """Styling of the text overlay drawn over the looped video."""

    enabled: bool = True
    position: OverlayPosition = OverlayPosition.BOTTOM_LEFT
    font_family: str = ""
    font_file: str = ""
    font_size: int = 28
    font_color: str = "white"
    shadow_x: int = 2
    shadow_y: int = 2
    outline_width: int = 1
    bg_color: str = "black@0.6"
    margin_x: int = 20
    margin_y: int = 20
    stacked: bool = True
    label: str = ""
    label_font_size: int = 22
    label_font_color: str = "yellow"


@dataclass(frozen=True)
class NowPlayingSource:
    """Where and how often to fetch "now playing" metadata."""

    mode: NowPlayingMode = NowPlayingMode.AZURACAST
    url: str = ""
    station: str = ""
    poll_interval: float = 5.0
    fallback_text: str = "No track info"

    @property
    def configured(self) -> bool:
        return bool(self.url.strip())


@dataclass(frozen=True)
class RestartPolicy:
    auto_restart: bool = True
    base_delay: float = 5.0
    max_attempts: int = 10


@dataclass(frozen=True)
class PlaylistItem:
    filename: str
    duration: Optional[float] = None
    enabled: bool = True
    sort_order: int = 0


@dataclass(frozen=True)
class AudioSource:
    url: str
    priority: int = 0
    enabled: bool = True
    name: str = ""


@dataclass(frozen=True)
class Destination:
    url: str
    stream_key: str = ""
    enabled: bool = True
    name: str = ""

    @property
    def full_url(self) -> str:
        base = self.url.strip()
        key = self.stream_key.strip()
        return f"{base}/{key}" if key else base


@dataclass(frozen=True)
class StationConfig:
    """Read-only snapshot of everything needed to launch a station."""

    station_id: str
    slug: str
    name: str = ""
    video: VideoSettings = field(default_factory=VideoSettings)
    audio: AudioSettings = field(default_factory=AudioSettings)
    overlay: OverlayStyle = field(default_factory=OverlayStyle)
    now_playing: NowPlayingSource = field(default_factory=NowPlayingSource)
    restart: RestartPolicy = field(default_factory=RestartPolicy)
    playlist: Tuple[PlaylistItem, ...] = ()
    audio_sources: Tuple[AudioSource, ...] = ()
    destinations: Tuple[Destination, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StationConfig":
        """Build a configuration from a nested JSON document."""
        overlay = dict(data.get("overlay") or {})
        if "position" in overlay:
            overlay["position"] = OverlayPosition(overlay["position"])
        now_playing = dict(data.get("now_playing") or {})
        if "mode" in now_playing:
            now_playing["mode"] = NowPlayingMode(now_playing["mode"])

        return cls(
            station_id=str(data["id"]),
            slug=str(data.get("slug") or data["id"]),
            name=str(data.get("name", "")),
            video=VideoSettings(**(data.get("video") or {})),
            audio=AudioSettings(**(data.get("audio") or {})),
            overlay=OverlayStyle(**overlay),
            now_playing=NowPlayingSource(**now_playing),
            restart=RestartPolicy(**(data.get("restart") or {})),
            playlist=tuple(PlaylistItem(**item) for item in data.get("playlist", [])),
            audio_sources=tuple(AudioSource(**src) for src in data.get("audio_sources", [])),
            destinations=tuple(Destination(**dest) for dest in data.get("destinations", [])),
        )


@dataclass
class PipelineStatus:
    """Point-in-time view of a station pipeline."""

    station_id: str
    state: PipelineState = PipelineState.STOPPED
    pid: Optional[int] = None
    restart_count: int = 0
    uptime_seconds: Optional[int] = None
    last_error: str = ""
    restart_pending: bool = False
    budget_exhausted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station_id": self.station_id,
            "state": self.state.value,
            "pid": self.pid,
            "restart_count": self.restart_count,
            "uptime_seconds": self.uptime_seconds,
            "last_error": self.last_error,
            "restart_pending": self.restart_pending,
            "budget_exhausted": self.budget_exhausted,
        }


@dataclass(frozen=True)
class TrackInfo:
    """Normalized now-playing metadata."""

    artist: str = ""
    title: str = ""

    @property
    def combined(self) -> str:
        if self.artist and self.title:
            return f"{self.artist} - {self.title}"
        return self.title or self.artist

    @property
    def is_empty(self) -> bool:
        return not (self.artist or self.title)
