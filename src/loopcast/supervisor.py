"""Supervisor for the encoding pipelines of many stations."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .diagnostics import DestinationCheck, SourceCheck, check_audio_source, check_destination
from .events import PipelineEvents, Severity
from .launch import NoDestinationError, StationNotFoundError
from .models import AudioSource, Destination, PipelineState, PipelineStatus, StationConfig
from .nowplaying import NowPlayingProbe, probe_now_playing
from .overlay import DrawtextSupport
from .pipeline import StationPipeline
from .playlist import MaterializedPlaylist, PlaylistMaterializer
from .settings import Settings
from .snapshot import SnapshotError, SnapshotRenderer
from .storage import StationPaths
from .store import StationStore

logger = logging.getLogger(__name__)


class StationSupervisor:
    """Starts, stops, restarts and reports on station pipelines."""

    def __init__(
        self,
        store: StationStore,
        settings: Optional[Settings] = None,
        events: Optional[PipelineEvents] = None,
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            store: Configuration store to read station snapshots from
            settings: Service settings; defaults apply when omitted
            events: Event registry shared with subscribers
        """
        self.store = store
        self.settings = settings or Settings()
        self.events = events or PipelineEvents()
        self.materializer = PlaylistMaterializer(
            self.settings.data_dir,
            self.settings.uploads_dir,
            coverage_hours=self.settings.coverage_hours,
            min_repeats=self.settings.min_repeats,
        )
        self.drawtext = DrawtextSupport(self.settings.ffmpeg_path)
        self.snapshots = SnapshotRenderer(
            self.settings.ffmpeg_path, self.drawtext, timeout=self.settings.snapshot_timeout
        )
        self._pipelines: Dict[str, StationPipeline] = {}
        # guards insertion into and removal from _pipelines only
        self._lock = asyncio.Lock()

    async def _pipeline(self, station_id: str) -> StationPipeline:
        pipeline = self._pipelines.get(station_id)
        if pipeline is not None:
            return pipeline
        async with self._lock:
            pipeline = self._pipelines.get(station_id)
            if pipeline is None:
                pipeline = StationPipeline(
                    station_id,
                    settings=self.settings,
                    events=self.events,
                    materializer=self.materializer,
                    drawtext=self.drawtext,
                )
                self._pipelines[station_id] = pipeline
            return pipeline

    def _config(self, station_id: str) -> StationConfig:
        config = self.store.get(station_id)
        if config is None:
            raise StationNotFoundError(f"Station {station_id} not found")
        return config

    async def _missing(self, station_id: str) -> None:
        pipeline = self._pipelines.get(station_id)
        if pipeline is not None:
            await pipeline.mark_missing()

    async def start(self, station_id: str) -> None:
        """
        Start a station's pipeline.

        Returns once the processes are spawned, not once they are healthy.

        Raises:
            PreconditionError: Unknown station or unusable configuration
            SpawnError: ffmpeg could not be started
        """
        try:
            config = self._config(station_id)
        except StationNotFoundError:
            await self._missing(station_id)
            raise
        pipeline = await self._pipeline(station_id)
        await pipeline.start(config)

    async def stop(self, station_id: str) -> None:
        """Stop a station. Forced termination, if needed, happens in the background."""
        pipeline = self._pipelines.get(station_id)
        if pipeline is not None:
            await pipeline.stop()

    async def restart(self, station_id: str) -> None:
        """Stop, settle, reset the restart budget and start with fresh configuration."""
        if self.store.get(station_id) is None:
            await self._missing(station_id)
            raise StationNotFoundError(f"Station {station_id} not found")
        pipeline = await self._pipeline(station_id)
        await pipeline.restart(lambda: self.store.get(station_id))

    def get_status(self, station_id: str) -> PipelineStatus:
        pipeline = self._pipelines.get(station_id)
        return pipeline.status() if pipeline else PipelineStatus(station_id=station_id)

    def get_all_statuses(self) -> Dict[str, PipelineStatus]:
        return {station_id: pipeline.status() for station_id, pipeline in list(self._pipelines.items())}

    def materialize_playlist(self, station_id: str) -> MaterializedPlaylist:
        """Rewrite a station's manifest without touching its running pipeline."""
        config = self._config(station_id)
        playlist = self.materializer.materialize(config)
        self.events.emit_log(station_id, Severity.INFO, "app", f"Playlist updated: {playlist.summary}")
        return playlist

    async def apply_playlist(self, station_id: str) -> MaterializedPlaylist:
        """Rewrite the manifest and restart the station if it is live."""
        playlist = self.materialize_playlist(station_id)
        state = self.get_status(station_id).state
        if state in (PipelineState.RUNNING, PipelineState.STARTING):
            await self.restart(station_id)
        return playlist

    async def generate_snapshot(self, station_id: str) -> Path:
        """
        Render one still image of the station's output.

        Raises:
            StationNotFoundError: Unknown station
            PlaylistMissingError: Nothing to render
            SnapshotError: ffmpeg failed
        """
        config = self._config(station_id)
        paths = StationPaths.for_slug(self.settings.data_dir, config.slug).ensure()
        if not paths.playlist.exists():
            self.materializer.materialize(config)
        try:
            return await self.snapshots.render(config, paths)
        except SnapshotError as exc:
            self.events.emit_log(station_id, Severity.WARNING, "app", f"Snapshot failed: {exc}")
            raise

    async def probe_now_playing(self, station_id: str) -> NowPlayingProbe:
        config = self._config(station_id)
        return await probe_now_playing(config.now_playing, timeout=self.settings.fetch_timeout)

    async def check_audio_sources(self, station_id: str) -> List[Tuple[AudioSource, SourceCheck]]:
        """Probe every enabled audio source of a station in priority order."""
        config = self._config(station_id)
        sources = sorted(
            (source for source in config.audio_sources if source.enabled),
            key=lambda source: source.priority,
        )
        checks = await asyncio.gather(
            *(check_audio_source(source.url, timeout=self.settings.fetch_timeout * 2) for source in sources)
        )
        return list(zip(sources, checks))

    async def check_destination(self, station_id: str, index: int = 0) -> Tuple[Destination, DestinationCheck]:
        """
        Push a test pattern to one of a station's destinations.

        Raises:
            StationNotFoundError: Unknown station
            NoDestinationError: The station has no destination at ``index``
        """
        config = self._config(station_id)
        if not 0 <= index < len(config.destinations):
            raise NoDestinationError(f"Station {station_id} has no destination #{index}")
        destination = config.destinations[index]
        check = await check_destination(
            destination,
            ffmpeg_path=self.settings.ffmpeg_path,
            timeout=self.settings.destination_test_timeout,
        )
        severity = Severity.INFO if check.success else Severity.WARNING
        outcome = "passed" if check.success else f"failed: {check.error}"
        self.events.emit_log(station_id, severity, "app", f"Destination test {destination.url} {outcome}")
        return destination, check

    async def remove_station(self, station_id: str) -> bool:
        """Tear down and forget a deleted station."""
        async with self._lock:
            pipeline = self._pipelines.pop(station_id, None)
        if pipeline is None:
            return False
        await pipeline.stop()
        await pipeline.wait_closed()
        logger.info("Removed station %s", station_id)
        return True

    async def shutdown(self) -> None:
        """Stop every station and wait for their processes to exit."""
        async with self._lock:
            pipelines = list(self._pipelines.values())
            self._pipelines.clear()
        await asyncio.gather(*(pipeline.stop() for pipeline in pipelines))
        await asyncio.gather(*(pipeline.wait_closed() for pipeline in pipelines))
        logger.info("Supervisor shut down (%d stations)", len(pipelines))
