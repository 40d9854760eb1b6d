"""Poll "now playing" metadata and publish it to the overlay text files."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

import aiohttp

from .events import PipelineEvents, Severity
from .models import NowPlayingMode, NowPlayingSource, TrackInfo
from .storage import NowPlayingFiles, write_text_atomic

logger = logging.getLogger(__name__)

PLACEHOLDER = "Starting..."


def parse_combined(text: Optional[str]) -> TrackInfo:
    """Split ``"Artist - Title"`` on the first `` - ``; no separator means title only."""
    text = (text or "").strip()
    if not text:
        return TrackInfo()
    artist, separator, title = text.partition(" - ")
    if not separator:
        return TrackInfo(title=text)
    return TrackInfo(artist=artist.strip(), title=title.strip())


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def track_from_azuracast(data: Any) -> TrackInfo:
    now_playing = data.get("now_playing") if isinstance(data, dict) else None
    if not isinstance(now_playing, dict):
        return TrackInfo()

    song = now_playing.get("song")
    if isinstance(song, dict):
        artist, title = _text(song.get("artist")), _text(song.get("title"))
        if artist or title:
            return TrackInfo(artist=artist, title=title)
        if song.get("text"):
            return parse_combined(_text(song.get("text")))
    return parse_combined(_text(now_playing.get("text")))


def track_from_icecast(data: Any) -> TrackInfo:
    icestats = data.get("icestats") if isinstance(data, dict) else None
    source = icestats.get("source") if isinstance(icestats, dict) else None
    if isinstance(source, list):
        source = source[0] if source else None
    if not isinstance(source, dict):
        return TrackInfo()

    artist, title = _text(source.get("artist")), _text(source.get("title"))
    if artist and title:
        return TrackInfo(artist=artist, title=title)
    return parse_combined(title or artist)


def source_url(source: NowPlayingSource) -> str:
    if source.mode is NowPlayingMode.AZURACAST:
        base = source.url.rstrip("/")
        station = source.station.strip("/")
        return f"{base}/api/nowplaying/{station}" if station else f"{base}/api/nowplaying"
    return source.url


async def fetch_track(session: aiohttp.ClientSession, source: NowPlayingSource) -> Tuple[Any, TrackInfo]:
    """Fetch the upstream document and return it with the parsed track."""
    async with session.get(source_url(source)) as response:
        response.raise_for_status()
        raw = await response.json(content_type=None)

    if source.mode is NowPlayingMode.AZURACAST:
        return raw, track_from_azuracast(raw)
    return raw, track_from_icecast(raw)


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


@dataclass
class NowPlayingProbe:
    success: bool
    raw: Any = None
    track: TrackInfo = field(default_factory=TrackInfo)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "raw": self.raw,
            "track": self.track.combined,
            "artist": self.track.artist,
            "title": self.track.title,
            "error": self.error,
        }


async def probe_now_playing(source: NowPlayingSource, timeout: float = 5.0) -> NowPlayingProbe:
    """One-shot fetch for diagnostics; never touches a running poller."""
    if not source.configured:
        return NowPlayingProbe(success=False, error="No now-playing URL configured")

    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            raw, track = await fetch_track(session, source)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        return NowPlayingProbe(success=False, error=_describe(exc))
    return NowPlayingProbe(success=True, raw=raw, track=track)


class NowPlayingPoller:
    """Background poller owned by one running pipeline."""

    def __init__(
        self,
        station_id: str,
        source: NowPlayingSource,
        files: NowPlayingFiles,
        events: PipelineEvents,
        *,
        timeout: float = 5.0,
    ) -> None:
        self.station_id = station_id
        self.source = source
        self.files = files
        self.events = events
        self.timeout = timeout
        self.last_published: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def seed(self) -> None:
        """Make sure the overlay files exist before the encoder opens them."""
        write_text_atomic(self.files.combined, PLACEHOLDER)
        write_text_atomic(self.files.artist, "")
        write_text_atomic(self.files.title, PLACEHOLDER)
        self.last_published = None

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name=f"loopcast-nowplaying-{self.station_id}")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def publish(self, track: TrackInfo) -> bool:
        """Write the overlay files if the combined text changed."""
        combined = track.combined or self.source.fallback_text
        if combined == self.last_published:
            return False

        write_text_atomic(self.files.artist, track.artist)
        write_text_atomic(self.files.title, track.title if not track.is_empty else combined)
        write_text_atomic(self.files.combined, combined)
        self.last_published = combined

        logger.debug("Station %s now playing: %s", self.station_id, combined)
        self.events.emit_now_playing(self.station_id, combined)
        return True

    async def poll_once(self, session: aiohttp.ClientSession) -> TrackInfo:
        if self.source.configured:
            _, track = await fetch_track(session, self.source)
        else:
            track = TrackInfo()
        self.publish(track)
        return track

    async def _run_loop(self) -> None:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            while not self._stop_event.is_set():
                try:
                    await self.poll_once(session)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    self.events.emit_log(
                        self.station_id,
                        Severity.WARNING,
                        "nowplaying",
                        f"Now playing poll error: {_describe(exc)}",
                    )
                await self._sleep(self.source.poll_interval)

    async def _sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
