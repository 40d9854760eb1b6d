"""Lifecycle of one station's encoding pipeline."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Set

from .events import PipelineEvents, Severity
from .launch import (
    LaunchPlan,
    PipelineError,
    PreconditionError,
    StationNotFoundError,
    build_single_plan,
    build_split_plan,
    check_preconditions,
)
from .models import PipelineState, PipelineStatus, StationConfig
from .nowplaying import NowPlayingPoller
from .overlay import DrawtextSupport, build_overlay_filters
from .playlist import PlaylistMaterializer
from .process import ProcessGroup, SpawnError
from .settings import Settings
from .storage import StationPaths

logger = logging.getLogger(__name__)

_LEVELS = {
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


def restart_delay(base_delay: float, attempt: int, *, factor: float = 1.5, cap: float = 60.0) -> float:
    """Backoff before automatic restart number ``attempt + 1``."""
    return min(base_delay * factor ** attempt, cap)


class StationPipeline:
    """
    State machine and process ownership for a single station.

    Every transition runs under ``self.lock`` so a station never ends up with
    two live process sets. Automatic restarts reuse the configuration snapshot
    taken by the last explicit start; only ``start``/``restart`` read a new one.
    """

    def __init__(
        self,
        station_id: str,
        *,
        settings: Settings,
        events: PipelineEvents,
        materializer: PlaylistMaterializer,
        drawtext: DrawtextSupport,
    ) -> None:
        self.id = station_id
        self.settings = settings
        self.events = events
        self.materializer = materializer
        self.drawtext = drawtext
        self.lock = asyncio.Lock()

        self.config: Optional[StationConfig] = None
        self.state: PipelineState = PipelineState.STOPPED
        self.restart_count = 0
        self.last_error = ""
        self.processes: Optional[ProcessGroup] = None
        self.started_at: Optional[float] = None

        self._poller: Optional[NowPlayingPoller] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._reapers: Set[asyncio.Task] = set()

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    def status(self) -> PipelineStatus:
        uptime = None
        if self.state is PipelineState.RUNNING and self.started_at is not None:
            uptime = int(time.monotonic() - self.started_at)
        exhausted = (
            self.state is PipelineState.ERROR
            and self.config is not None
            and not self.restart_pending
            and self.restart_count >= self.config.restart.max_attempts
        )
        return PipelineStatus(
            station_id=self.id,
            state=self.state,
            pid=self.processes.pid if self.processes else None,
            restart_count=self.restart_count,
            uptime_seconds=uptime,
            last_error=self.last_error,
            restart_pending=self.restart_pending,
            budget_exhausted=exhausted,
        )

    async def start(self, config: StationConfig) -> None:
        """
        Launch the pipeline unless it is already starting or running.

        Raises:
            PreconditionError: If the configuration cannot be launched
            SpawnError: If ffmpeg could not be started
        """
        async with self.lock:
            if self.state in (PipelineState.STARTING, PipelineState.RUNNING):
                return
            self._cancel_restart()
            self.config = config
            await self._launch(fresh=True)

    async def stop(self) -> None:
        async with self.lock:
            if self.state is PipelineState.STOPPED and self.processes is None and not self.restart_pending:
                return
            # mark first so the exit watcher treats the exit as intended
            self._set_state(PipelineState.STOPPED)
            await self._teardown()
            self._log(Severity.INFO, "Station stopped")

    async def restart(self, load_config: Callable[[], Optional[StationConfig]]) -> None:
        """Stop, let the old processes release their resources, then start afresh."""
        async with self.lock:
            self._set_state(PipelineState.RESTARTING)
            self._log(Severity.INFO, "Restarting station...")
            await self._teardown()

        await asyncio.sleep(self.settings.settle_delay)

        async with self.lock:
            if self.state is not PipelineState.RESTARTING:
                # stopped or started by someone else while settling
                return
            self.restart_count = 0
            config = load_config()
            if config is None:
                message = f"Station {self.id} not found"
                await self._fail(message, retry=False)
                raise StationNotFoundError(message)
            self.config = config
            await self._launch(fresh=True)

    async def mark_missing(self) -> None:
        """The station disappeared from the configuration store."""
        async with self.lock:
            await self._teardown()
            await self._fail(f"Station {self.id} not found", retry=False)

    async def wait_closed(self) -> None:
        """Wait until every process this pipeline ever spawned has exited."""
        if self._reapers:
            await asyncio.gather(*self._reapers, return_exceptions=True)

    async def _launch(self, *, fresh: bool) -> None:
        config = self.config
        assert config is not None
        self._set_state(PipelineState.STARTING)
        paths = StationPaths.for_slug(self.settings.data_dir, config.slug)

        try:
            check_preconditions(config)
            if fresh:
                playlist = self.materializer.materialize(config)
                self._log(Severity.INFO, f"Playlist updated: {playlist.summary}")
            await self._start_poller(config, paths, fresh=fresh)
            overlay = build_overlay_filters(
                config.overlay,
                paths.now_playing_files(),
                drawtext_available=await self.drawtext.available(),
            )
            plan = self._build_plan(config, paths, overlay)
        except PreconditionError as exc:
            await self._stop_poller()
            await self._fail(str(exc), retry=False)
            raise
        except OSError as exc:
            await self._stop_poller()
            await self._fail(f"Failed to prepare station files: {exc}", retry=False)
            raise PipelineError(str(exc)) from exc
        except asyncio.CancelledError:
            await self._abandon_launch()
            raise

        self._log(Severity.INFO, f"Launching ffmpeg with {len(plan.destinations)} destination(s)")
        try:
            group = await ProcessGroup.spawn(self.id, plan, self.events)
        except SpawnError as exc:
            await self._fail(str(exc), retry=True)
            raise
        except asyncio.CancelledError:
            await self._abandon_launch()
            raise

        self.processes = group
        self.started_at = time.monotonic()
        self.last_error = ""
        self._set_state(PipelineState.RUNNING)
        self._watch_task = asyncio.create_task(self._watch(group), name=f"loopcast-watch-{self.id}")

    async def _abandon_launch(self) -> None:
        # nothing was spawned; STARTING would make every later start a no-op
        self._set_state(PipelineState.STOPPED)
        self._log(Severity.WARNING, "Start cancelled before ffmpeg was launched")
        await self._stop_poller()

    def _build_plan(self, config: StationConfig, paths: StationPaths, overlay) -> LaunchPlan:
        if self.settings.pipeline_mode == "split":
            return build_split_plan(config, paths.playlist, overlay, ffmpeg=self.settings.ffmpeg_path)
        return build_single_plan(config, paths.playlist, overlay, ffmpeg=self.settings.ffmpeg_path)

    async def _watch(self, group: ProcessGroup) -> None:
        code = await group.wait()
        async with self.lock:
            if self.processes is not group:
                # stopped or superseded; the exit was expected
                return
            self.processes = None
            self.started_at = None
            self._track(group.terminate(self.settings.stop_grace))
            if self.state is PipelineState.STOPPED:
                return
            await self._fail(f"ffmpeg exited with code {code}", retry=True)

    async def _fail(self, message: str, *, retry: bool) -> None:
        self.last_error = message
        self._set_state(PipelineState.ERROR)
        self._log(Severity.ERROR, message)
        if retry:
            await self._schedule_restart()

    async def _schedule_restart(self) -> None:
        assert self.config is not None
        policy = self.config.restart
        if not policy.auto_restart:
            await self._stop_poller()
            return
        if self.restart_count >= policy.max_attempts:
            self._log(
                Severity.ERROR,
                f"Giving up after {self.restart_count} restart attempts; manual restart required",
            )
            await self._stop_poller()
            return

        delay = restart_delay(
            policy.base_delay,
            self.restart_count,
            factor=self.settings.backoff_factor,
            cap=self.settings.backoff_cap,
        )
        self.restart_count += 1
        self._log(Severity.INFO, f"Auto-restart attempt {self.restart_count} in {delay:.1f}s")
        self._restart_task = asyncio.create_task(
            self._delayed_restart(delay), name=f"loopcast-restart-{self.id}"
        )

    async def _delayed_restart(self, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self.lock:
            if self._restart_task is not asyncio.current_task() or self.state is not PipelineState.ERROR:
                return
            self._restart_task = None
            self._set_state(PipelineState.RESTARTING)
            try:
                await self._launch(fresh=False)
            except PipelineError as exc:
                logger.warning("Automatic restart of station %s failed: %s", self.id, exc)

    def _cancel_restart(self) -> None:
        task = self._restart_task
        self._restart_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _teardown(self) -> None:
        self._cancel_restart()
        group = self.processes
        self.processes = None
        self.started_at = None
        if group is not None:
            self._track(group.terminate(self.settings.stop_grace))
        await self._stop_poller()

    def _track(self, reaper: asyncio.Task) -> None:
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    async def _start_poller(self, config: StationConfig, paths: StationPaths, *, fresh: bool) -> None:
        if not fresh and self._poller is not None and self._poller.running:
            return
        await self._stop_poller()
        paths.ensure()
        poller = NowPlayingPoller(
            self.id,
            config.now_playing,
            paths.now_playing_files(),
            self.events,
            timeout=self.settings.fetch_timeout,
        )
        poller.seed()
        await poller.start()
        self._poller = poller

    async def _stop_poller(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None:
            await poller.stop()

    def _set_state(self, state: PipelineState) -> None:
        if state is self.state:
            return
        self.state = state
        self.events.emit_status(self.id, state)

    def _log(self, severity: Severity, message: str) -> None:
        logger.log(_LEVELS[severity], "Station %s: %s", self.id, message)
        self.events.emit_log(self.id, severity, "app", message)
